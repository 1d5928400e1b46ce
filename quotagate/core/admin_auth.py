"""
Admin authentication for billing override operations.

Operators authenticate with the shared X-Admin-Key header (ADMIN_KEY).
Every admin action is audited with the resolved actor identity.
"""
import hashlib
import hmac
from dataclasses import dataclass
from typing import Literal, Optional

from fastapi import HTTPException, Request

from quotagate.core.config import settings


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_type: Literal["admin_key"]
    actor_id: str  # "key:<hash>"
    actor_display: Optional[str] = None


def get_admin_api_key() -> Optional[str]:
    return settings.ADMIN_KEY


def verify_admin_key(request: Request) -> Optional[AdminActor]:
    """
    Verify X-Admin-Key header.
    Returns AdminActor if valid, None if not present/invalid.
    """
    expected_key = get_admin_api_key()
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key, expected_key):
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(
        actor_type="admin_key",
        actor_id=f"key:{key_hash}",
        actor_display="Admin Key",
    )


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: Require admin authentication.

    Usage:
        @router.post("/v1/admin/billing/...")
        def admin_endpoint(actor: AdminActor = Depends(require_admin)):
            ...
    """
    if not get_admin_api_key():
        raise HTTPException(
            status_code=503,
            detail="Admin authentication not configured (set ADMIN_KEY)",
        )

    actor = verify_admin_key(request)
    if not actor:
        raise HTTPException(
            status_code=401,
            detail="Unauthorized: invalid or missing X-Admin-Key",
        )
    return actor
