"""Health check endpoint."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from chatgpa.config.app_config import AppConfig
from chatgpa.core.folder_health import get_folder_health_metrics
from chatgpa.web.services import AppServices, ai_diagnostics, validate_ai_config

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])


def wants_details(mode: str, query: dict[str, str]) -> bool:
    """Details are always on outside live mode, and on request in live."""
    return mode != "live" or query.get("details") == "true"


def environment_checks(config: AppConfig) -> tuple[dict[str, bool], str | None]:
    """Basic checks and the AI configuration error (if any)."""
    ai_valid, ai_error = validate_ai_config(config)
    checks = {
        "openai_api_key": ai_diagnostics(config)["key_present"],
        "ai_config_valid": ai_valid,
        "router_operational": True,
    }
    return checks, ai_error


def health_report(services: AppServices, details: bool) -> dict[str, Any]:
    """Health payload shared by ``/api/health`` and the util gateway.

    Args:
        services: App services (config and gateway metrics)
        details: Include checks, AI diagnostics, router metrics,
            folder metrics and warnings

    Returns:
        Dict with at least ``status`` ("healthy" or "unhealthy") and ``mode``
    """
    config = services.config
    checks, ai_error = environment_checks(config)
    report: dict[str, Any] = {
        "status": "healthy" if all(checks.values()) else "unhealthy",
        "mode": config.mode,
    }
    if not details:
        return report

    folder_metrics = get_folder_health_metrics()
    warnings = []
    if folder_metrics.duplicate_notes_detected > 0:
        warnings.append(
            {
                "code": "DUPLICATE_NOTE_MAPPINGS",
                "message": (
                    f"{folder_metrics.duplicate_notes_detected} note(s) mapped to multiple folders. "
                    "Check data integrity."
                ),
                "severity": "WARN",
            }
        )

    report.update(
        checks=checks,
        ai={**ai_diagnostics(config), "config_valid": checks["ai_config_valid"], "config_error": ai_error},
        router={"operational": True, "gateways": services.metrics.snapshot()},
        folder_metrics=folder_metrics.to_dict(),
        warnings=warnings,
    )
    return report


@router.api_route("/api/health", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def health_check(request: Request) -> JSONResponse:
    """Check API health; 503 when a check fails."""
    if request.method != "GET":
        return JSONResponse({"error": "Method not allowed"}, status_code=405)

    services: AppServices = request.app.state.services
    details = wants_details(services.config.mode, dict(request.query_params))
    checks, ai_error = environment_checks(services.config)
    healthy = all(checks.values())

    body: dict[str, Any] = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if details:
        body["checks"] = checks
        body["ai_config_error"] = ai_error

    if not healthy:
        logger.warning("health_check_unhealthy", mode=services.config.mode)
    return JSONResponse(body, status_code=200 if healthy else 503)
