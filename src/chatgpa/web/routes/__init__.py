"""Route handlers for the ChatGPA API."""

from chatgpa.web.routes.ai import router as ai_router
from chatgpa.web.routes.attempts import router as attempts_router
from chatgpa.web.routes.chat import router as chat_router
from chatgpa.web.routes.health import router as health_router
from chatgpa.web.routes.redirects import router as redirects_router
from chatgpa.web.routes.util import router as util_router
from chatgpa.web.routes.workspace import router as workspace_router

__all__ = [
    "ai_router",
    "attempts_router",
    "chat_router",
    "health_router",
    "redirects_router",
    "util_router",
    "workspace_router",
]
