"""Shared error helpers for API routers."""

from datetime import datetime, timezone

from fastapi import HTTPException, Request


def correlation_id_for(request: Request) -> str:
    return request.headers.get("X-Call-ID", "unknown")


def http_error(status_code: int, error_type: str, message: str, correlation_id: str) -> HTTPException:
    """Build an HTTPException carrying the standard error body."""
    return HTTPException(
        status_code=status_code,
        detail={
            "error": error_type,
            "message": message,
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )
