"""Dependency injection for FastAPI endpoints"""

from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from storefront_payments.config import RuntimeConfig, resolve_runtime_config
from storefront_payments.domain.reconciliation import ReconciliationEngine
from storefront_payments.infrastructure.clients.gateway import GatewayClient
from storefront_payments.infrastructure.database.models import User
from storefront_payments.infrastructure.database.repositories import SettingsRepository, UserRepository
from storefront_payments.infrastructure.database.session import get_db
from storefront_payments.infrastructure.security import verify_token


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_runtime_config(db: Session = Depends(get_db)) -> RuntimeConfig:
    """Resolve operator-editable configuration for this request"""
    return resolve_runtime_config(SettingsRepository(db).get_value)


def get_gateway_client(db: Session = Depends(get_db)) -> GatewayClient:
    """Provide payment gateway client; credentials resolve on every call"""
    settings_repo = SettingsRepository(db)
    return GatewayClient(lambda: resolve_runtime_config(settings_repo.get_value))


def get_engine(
    db: Session = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> ReconciliationEngine:
    """Provide reconciliation engine bound to the request session"""
    settings_repo = SettingsRepository(db)
    return ReconciliationEngine(db, gateway, lambda: resolve_runtime_config(settings_repo.get_value))


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to a user; 401 if absent or invalid"""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Authentication required")

    try:
        claims = verify_token(authorization[7:].strip())
        user_id = int(claims["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = UserRepository(db).get(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Restrict endpoint to admin and superadmin roles"""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Administrators only")
    return user
