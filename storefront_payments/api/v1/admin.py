"""Admin payment log and runtime settings endpoints"""

import math
import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from storefront_payments.api.dependencies import get_runtime_config, require_admin
from storefront_payments.api.v1.schemas import (
    PaymentLogItem,
    PaymentLogResponse,
    SettingResponse,
    SettingUpdateRequest,
)
from storefront_payments.config import MIN_TOPUP_AMOUNT_KEY, PUBLIC_KEYS, RUNTIME_KEYS, RuntimeConfig
from storefront_payments.infrastructure.database.models import User
from storefront_payments.infrastructure.database.repositories import PaymentIntentRepository, SettingsRepository
from storefront_payments.infrastructure.database.session import get_db

router = APIRouter()


@router.get("/admin/payment-log", response_model=PaymentLogResponse)
def get_payment_log(
    page: int = Query(1, ge=1),
    limit: int = Query(15, ge=1, le=50),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Newest-first list of payment intents with their owners"""
    total, rows = PaymentIntentRepository(db).page_with_users(page, limit)

    items = [
        PaymentLogItem(
            id=intent.id,
            user_id=intent.user_id,
            amount=intent.amount,
            gateway_transaction_id=intent.gateway_transaction_id,
            status=intent.status,
            product_id=intent.product_id,
            payment_method=intent.payment_method,
            created_at=intent.created_at.isoformat() if intent.created_at else None,
            confirmed_at=intent.confirmed_at.isoformat() if intent.confirmed_at else None,
            username=user.username if user else None,
            display_name=user.display_name if user else None,
        )
        for intent, user in rows
    ]

    return PaymentLogResponse(
        items=items,
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit),
    )


@router.put("/admin/settings/{key}")
def update_setting(
    key: str,
    request_body: SettingUpdateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Store a runtime setting.

    Gateway credentials, demo mode and the top-up minimum are read on every
    request, so changes apply without a restart.
    """
    if key not in RUNTIME_KEYS:
        raise HTTPException(status_code=404, detail="Unknown setting")

    value = "" if request_body.value is None else str(request_body.value)
    SettingsRepository(db).set_value(key, value)
    db.commit()

    logging.info("Setting updated", extra={"key": key, "admin_id": admin.id})
    return {"success": True}


@router.get("/settings/{key}", response_model=SettingResponse)
def get_public_setting(key: str, config: RuntimeConfig = Depends(get_runtime_config)):
    """Read the effective value of a non-secret setting (e.g. the top-up minimum shown on the form)"""
    if key not in PUBLIC_KEYS:
        raise HTTPException(status_code=404, detail="Setting not found")

    if key == MIN_TOPUP_AMOUNT_KEY:
        value = str(config.min_topup_amount)
    else:
        value = "true" if config.demo_mode else "false"
    return SettingResponse(key=key, value=value)
