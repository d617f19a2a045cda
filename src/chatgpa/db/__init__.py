"""Database module for SQLite persistence.

Provides:
- Database connection management
- Schema initialization
- Repository functions for classes/notes, folders, quizzes, attempts
  and the token ledger
"""

from chatgpa.db.database import get_db, init_db

__all__ = ["get_db", "init_db"]
