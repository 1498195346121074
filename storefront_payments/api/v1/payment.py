"""Payment endpoints: intent creation, gateway webhook, and the check-return poll"""

import hmac
import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from storefront_payments.api.dependencies import (
    get_current_user,
    get_engine,
    get_request_id,
    get_runtime_config,
)
from storefront_payments.api.v1.schemas import (
    CheckReturnResponse,
    PaymentCreateRequest,
    PaymentCreateResponse,
    WebhookPayload,
)
from storefront_payments.config import RuntimeConfig
from storefront_payments.domain.exceptions import (
    AmountMismatchError,
    BelowMinimumError,
    GatewayError,
    GatewayNotConfiguredError,
    ProductNotFoundError,
)
from storefront_payments.domain.models import DemoPurchase, WebhookEvent
from storefront_payments.domain.reconciliation import ReconciliationEngine
from storefront_payments.infrastructure.database.models import User
from storefront_payments.infrastructure.observability.metrics import webhook_rejection_counter

router = APIRouter()


@router.post("/payment/create", response_model=PaymentCreateResponse, response_model_exclude_none=True)
async def create_payment(
    request_body: PaymentCreateRequest,
    request: Request,
    user: User = Depends(get_current_user),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """
    Start a top-up or product purchase.

    Returns the gateway redirect for the payment form, or in demo mode the
    delivery page for an instantly fulfilled purchase.
    """
    request_id = get_request_id(request)

    try:
        result = await engine.create_intent(
            user,
            request_body.amount,
            method=request_body.payment_method,
            product_id=request_body.product_id,
        )

    except (AmountMismatchError, BelowMinimumError) as e:
        logging.warning(f"Payment rejected: {e}", extra={"request_id": request_id, "user_id": user.id})
        raise HTTPException(status_code=400, detail=str(e))

    except ProductNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except GatewayNotConfiguredError as e:
        logging.error(f"Gateway not configured: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail=str(e))

    except GatewayError as e:
        logging.error(f"Gateway error: {e}", extra={"request_id": request_id, "status_code": e.status_code})
        raise HTTPException(status_code=502, detail=e.message)

    except Exception as e:
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    if isinstance(result, DemoPurchase):
        return PaymentCreateResponse(redirect=result.redirect, delivery_token=result.delivery_token)

    return PaymentCreateResponse(
        redirect=result.redirect,
        transaction_id=result.transaction_id,
        status=result.status,
    )


@router.post("/payment/webhook", response_class=PlainTextResponse)
async def payment_webhook(
    request: Request,
    config: RuntimeConfig = Depends(get_runtime_config),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """
    Gateway server-to-server notification.

    Acknowledges with 200 once the shared secret passes, including for
    statuses that need no action and for repeat deliveries, so the gateway
    does not retry. 500 is returned only when storage fails mid-confirmation;
    the intent stays PENDING and a retry is safe.
    """
    request_id = get_request_id(request)

    if config.webhook_secret:
        supplied = request.headers.get("x-webhook-secret") or ""
        if not hmac.compare_digest(supplied.encode(), config.webhook_secret.encode()):
            webhook_rejection_counter.labels(reason="secret").inc()
            logging.warning("Webhook secret mismatch", extra={"request_id": request_id})
            return PlainTextResponse("Unauthorized", status_code=401)

    try:
        payload = WebhookPayload.model_validate(await request.json())
    except (ValueError, ValidationError):
        webhook_rejection_counter.labels(reason="malformed").inc()
        return PlainTextResponse("Bad Request", status_code=400)

    try:
        engine.receive_webhook(
            WebhookEvent(
                id=payload.id,
                status=payload.status,
                amount=payload.amount,
                currency=payload.currency,
            )
        )
    except Exception as e:
        webhook_rejection_counter.labels(reason="error").inc()
        logging.error(f"Webhook processing failed: {e}", extra={"request_id": request_id, "transaction_id": payload.id})
        return PlainTextResponse("Internal Server Error", status_code=500)

    return PlainTextResponse("OK", status_code=200)


@router.get("/payment/check-return", response_model=CheckReturnResponse, response_model_exclude_none=True)
async def check_return(
    request: Request,
    user: User = Depends(get_current_user),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """
    Poll called by the browser after the gateway redirect.

    Gateway and configuration failures report status ERROR so the page can
    offer a retry; nothing is mutated in that case.
    """
    request_id = get_request_id(request)

    try:
        result = await engine.check_return(user)

    except GatewayNotConfiguredError as e:
        logging.error(f"Gateway not configured: {e}", extra={"request_id": request_id})
        return CheckReturnResponse(status="ERROR", credited=False, error=str(e))

    except GatewayError as e:
        logging.warning(f"Gateway status check failed: {e}", extra={"request_id": request_id, "user_id": user.id})
        return CheckReturnResponse(status="ERROR", credited=False, error=e.message)

    except Exception as e:
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        return CheckReturnResponse(status="ERROR", credited=False)

    return CheckReturnResponse(
        status=result.status,
        credited=result.credited,
        product_id=result.product_id,
        delivery_token=result.delivery_token,
    )
