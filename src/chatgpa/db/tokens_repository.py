"""Token ledger: balances in usage_limits, spend history in usage_logs.

``spend_tokens`` is the only way balances go down. It runs in one
transaction, never lets a balance go negative and answers with a
structured result instead of raising on refusal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from chatgpa.db.database import get_db, now_iso

logger = structlog.get_logger(__name__)

# Spend order: personal allowance first, then reserve, then pool bonus
BALANCE_ORDER = ("personal", "reserve", "pool_bonus")


@dataclass
class Balance:
    """Per-user token balances."""

    user_id: str
    personal: int
    reserve: int
    pool_bonus: int

    @property
    def remaining(self) -> int:
        return self.personal + self.reserve + self.pool_bonus

    def to_dict(self) -> dict[str, Any]:
        return {
            "personal": self.personal,
            "reserve": self.reserve,
            "pool_bonus": self.pool_bonus,
            "remaining": self.remaining,
        }


def get_balance(user_id: str) -> Balance | None:
    """Current balances, or None if the user has no ledger row."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT user_id, personal, reserve, pool_bonus FROM usage_limits WHERE user_id = ?",
            (user_id,),
        ).fetchone()
    if row is None:
        return None
    return Balance(**dict(row))


def grant_tokens(user_id: str, personal: int = 0, reserve: int = 0, pool_bonus: int = 0) -> Balance:
    """Top up balances, creating the ledger row on first grant."""
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO usage_limits (user_id, personal, reserve, pool_bonus, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (user_id) DO UPDATE SET
                personal = personal + excluded.personal,
                reserve = reserve + excluded.reserve,
                pool_bonus = pool_bonus + excluded.pool_bonus,
                updated_at = excluded.updated_at
            """,
            (user_id, personal, reserve, pool_bonus, now_iso()),
        )

    logger.info("tokens.granted", user_id=user_id, personal=personal, reserve=reserve, pool_bonus=pool_bonus)
    balance = get_balance(user_id)
    assert balance is not None
    return balance


def spend_tokens(
    user_id: str,
    tokens: int,
    model: str | None = None,
    source: str = "use_tokens",
    request_id: str | None = None,
) -> dict[str, Any]:
    """Atomically spend tokens and log the usage.

    Args:
        user_id: Whose ledger to charge
        tokens: Amount to spend
        model: Model the tokens were spent on
        source: Caller label stored with the usage row
        request_id: Correlation id stored with the usage row

    Returns:
        ``{"ok": True, "personal", "reserve", "pool_bonus", "remaining"}``
        on success, or ``{"ok": False, "reason", "remaining"}`` where reason
        is one of non_positive_spend, no_balance, insufficient_funds.
    """
    if tokens <= 0:
        return {"ok": False, "reason": "non_positive_spend", "remaining": 0}

    with get_db() as conn:
        row = conn.execute(
            "SELECT personal, reserve, pool_bonus FROM usage_limits WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        if row is None:
            return {"ok": False, "reason": "no_balance", "remaining": 0}

        balances = {name: row[name] for name in BALANCE_ORDER}
        available = sum(balances.values())
        if available < tokens:
            return {"ok": False, "reason": "insufficient_funds", "remaining": available}

        left = tokens
        for name in BALANCE_ORDER:
            take = min(balances[name], left)
            balances[name] -= take
            left -= take

        conn.execute(
            """
            UPDATE usage_limits
            SET personal = ?, reserve = ?, pool_bonus = ?, updated_at = ?
            WHERE user_id = ?
            """,
            (balances["personal"], balances["reserve"], balances["pool_bonus"], now_iso(), user_id),
        )
        conn.execute(
            """
            INSERT INTO usage_logs (user_id, tokens, model, source, request_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, tokens, model, source, request_id, now_iso()),
        )

    logger.info("tokens.spent", user_id=user_id, tokens=tokens, source=source)
    return {"ok": True, **balances, "remaining": sum(balances.values())}


def log_usage(
    user_id: str,
    tokens: int,
    model: str | None,
    source: str,
    request_id: str | None = None,
) -> None:
    """Record usage without touching balances."""
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO usage_logs (user_id, tokens, model, source, request_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, tokens, model, source, request_id, now_iso()),
        )


def list_usage(user_id: str) -> list[dict[str, Any]]:
    """Usage rows for a user, oldest first."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT tokens, model, source, request_id, created_at FROM usage_logs WHERE user_id = ? ORDER BY id",
            (user_id,),
        ).fetchall()
    return [dict(r) for r in rows]
