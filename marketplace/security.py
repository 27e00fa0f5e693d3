# marketplace/security.py
"""Security dependencies for API key validation, scope enforcement and caller identity."""
from __future__ import annotations

from datetime import datetime, UTC
from typing import Callable, Set

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from marketplace import config
from marketplace.db import get_db
from marketplace.models.api_key import ApiKey, ApiScope
from marketplace.models.audit import AuditLog
from marketplace.models.user import User
from marketplace.utils.apikey import find_valid_key
from marketplace.utils.audit import sanitize_payload_for_audit
from marketplace.utils.errors import error_response


def _extract_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Read the key from ``Authorization: Bearer ...`` or ``X-API-Key``."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def _legacy_key(db: Session) -> ApiKey:
    """Admit the shared dev key as an admin without a user, auditing its use."""

    if not config.DEV_API_KEY_ALLOWED:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("LEGACY_KEY_FORBIDDEN", "Legacy dev key disabled."),
        )
    now = datetime.now(UTC)
    db.add(
        AuditLog(
            actor="legacy-apikey",
            action="LEGACY_API_KEY_USED",
            entity="ApiKey",
            entity_id=0,
            data_json=sanitize_payload_for_audit({"env": config.ENV}),
            at=now,
        )
    )
    db.commit()
    return ApiKey(
        id=0,
        name="__legacy__",
        prefix="legacy",
        key_hash="legacy",
        scope=ApiScope.admin,
        is_active=True,
        created_at=now,
        expires_at=None,
        last_used_at=now,
        user_id=None,
    )


def require_api_key(
    db: Session = Depends(get_db),
    token: str | None = Depends(_extract_key),
) -> ApiKey:
    """Validate API key tokens and return the corresponding row."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_API_KEY", "API key required."),
        )

    key = find_valid_key(db, token)
    if key == "legacy":
        return _legacy_key(db)

    if not isinstance(key, ApiKey) or not key.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHORIZED", "Invalid or expired API key"),
        )

    now = datetime.now(UTC)
    key.last_used_at = now
    payload = {"scope": key.scope.value, "prefix": key.prefix}
    db.add(
        AuditLog(
            actor=f"apikey:{key.id}",
            action="API_KEY_USED",
            entity="ApiKey",
            entity_id=key.id,
            data_json=sanitize_payload_for_audit(payload),
            at=now,
        )
    )
    db.commit()
    return key


def require_scope(allowed: Set[ApiScope]) -> Callable:
    """Require the key to carry one of the ``allowed`` scopes (admin always passes)."""

    if not allowed:
        raise RuntimeError("require_scope needs a non-empty set of ApiScope")

    def _dep(key: ApiKey = Depends(require_api_key)) -> ApiKey:
        if key.scope == ApiScope.admin or key.scope in allowed:
            return key
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response(
                "INSUFFICIENT_SCOPE",
                f"Requires one of: {sorted(scope.value for scope in allowed)}",
            ),
        )

    return _dep


def require_member(
    api_key: ApiKey = Depends(require_scope({ApiScope.member})),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the marketplace user acting through the presented key."""

    user = db.get(User, api_key.user_id) if api_key.user_id is not None else None
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("USER_REQUIRED", "This API key is not linked to an active user."),
        )
    return user


def is_staff(api_key: ApiKey) -> bool:
    return api_key.scope in (ApiScope.admin, ApiScope.support)


__all__ = ["require_api_key", "require_scope", "require_member", "is_staff"]
