from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt

from orderflow.core.config import settings
from orderflow.domain import AuthorizationContext, Order, Role

security = HTTPBearer(auto_error=False)


def is_admin(ctx: AuthorizationContext) -> bool:
    return ctx.is_authenticated and ctx.role == Role.ADMIN


def normalize_email(value: Optional[str]) -> Optional[str]:
    return value.strip().lower() if value else None


def owns_order(ctx: AuthorizationContext, order: Order) -> bool:
    """Owner match on the numeric user id when both sides carry one, else on the token subject."""
    if not ctx.is_authenticated:
        return False
    if ctx.user_id is not None and order.user_id is not None:
        return order.user_id == ctx.user_id
    email = normalize_email(ctx.email)
    return email is not None and normalize_email(order.owner_email) == email


def can_access_order(ctx: AuthorizationContext, order: Order) -> bool:
    return is_admin(ctx) or owns_order(ctx, order)


def can_cancel_order(ctx: AuthorizationContext, order: Order) -> bool:
    """Ownership/role check only; the status guard lives in the transition table."""
    return can_access_order(ctx, order)


def context_from_claims(payload: dict) -> AuthorizationContext:
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid access token")
    raw_uid = payload.get("uid")
    try:
        user_id = int(raw_uid) if raw_uid is not None else None
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid user id claim")
    role = Role.ADMIN if payload.get("role") == Role.ADMIN.value else Role.CUSTOMER
    return AuthorizationContext(user_id=user_id, email=payload.get("sub"), role=role, is_authenticated=True)


def decode_context(token: str) -> AuthorizationContext:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    return context_from_claims(payload)


def get_optional_context(creds: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> AuthorizationContext:
    if not creds:
        return AuthorizationContext.anonymous()
    return decode_context(creds.credentials)


def get_current_context(creds: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> AuthorizationContext:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return decode_context(creds.credentials)


def require_admin(ctx: AuthorizationContext = Depends(get_current_context)) -> AuthorizationContext:
    if not is_admin(ctx):
        raise HTTPException(status_code=403, detail="Admin only")
    return ctx
