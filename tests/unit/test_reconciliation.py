"""Unit tests for the reconciliation engine"""

import pytest
from unittest.mock import AsyncMock, Mock
from sqlalchemy.orm import Session

from storefront_payments.domain.exceptions import (
    AmountMismatchError,
    BelowMinimumError,
    GatewayError,
    GatewayNotConfiguredError,
    ProductNotFoundError,
)
from storefront_payments.domain.models import (
    ConfirmationSource,
    DemoPurchase,
    GatewayTransaction,
    IntentCreated,
    IntentStatus,
    WebhookEvent,
)
from storefront_payments.domain.reconciliation import ReconciliationEngine
from storefront_payments.infrastructure.clients.gateway import GatewayClient
from storefront_payments.infrastructure.database.models import (
    DeliveryCredential,
    Notification,
    PaymentIntent,
    Purchase,
)
from storefront_payments.infrastructure.database.repositories import (
    PaymentIntentRepository,
    SettingsRepository,
)
from storefront_payments.infrastructure.notifications import NotificationSink


@pytest.fixture
def gateway() -> AsyncMock:
    """Gateway double returning a pending transaction"""
    gateway = AsyncMock(spec=GatewayClient)
    gateway.create_transaction.return_value = GatewayTransaction(
        transaction_id="tx-1",
        redirect="https://pay.example/form/tx-1",
        status="PENDING",
    )
    gateway.get_status.return_value = "PENDING"
    return gateway


@pytest.fixture
def engine(db: Session, gateway: AsyncMock, config_provider) -> ReconciliationEngine:
    return ReconciliationEngine(db, gateway, config_provider)


def pending_intent(db: Session, user_id: int, amount: int, tx: str, product_id=None) -> PaymentIntent:
    intent = PaymentIntentRepository(db).create(user_id, amount, tx, product_id=product_id, payment_method="sbp")
    db.commit()
    return intent


def get_intent(db: Session, tx: str) -> PaymentIntent:
    db.expire_all()
    return PaymentIntentRepository(db).get_by_transaction_id(tx)


# ----------------------------------------------------------------------
# create_intent
# ----------------------------------------------------------------------


async def test_topup_creates_pending_intent(db, engine, gateway, buyer, gateway_settings):
    """Top-up above the minimum goes to the gateway and is tracked as PENDING"""
    result = await engine.create_intent(buyer, 500, method="sbp")

    assert isinstance(result, IntentCreated)
    assert result.transaction_id == "tx-1"
    assert result.redirect == "https://pay.example/form/tx-1"

    intent = get_intent(db, "tx-1")
    assert intent.status == IntentStatus.PENDING.value
    assert intent.amount == 500
    assert intent.user_id == buyer.id
    assert intent.product_id is None

    kwargs = gateway.create_transaction.call_args.kwargs
    assert kwargs["amount"] == 500
    assert kwargs["payload"] == str(buyer.id)
    assert kwargs["success_url"].endswith("/topup/success")
    assert kwargs["failed_url"].endswith("/topup?failed=1")


async def test_topup_below_minimum_rejected(db, engine, gateway, buyer, gateway_settings):
    SettingsRepository(db).set_value("min_topup_amount", "100")
    db.commit()

    with pytest.raises(BelowMinimumError) as exc_info:
        await engine.create_intent(buyer, 99)

    assert exc_info.value.minimum == 100
    gateway.create_transaction.assert_not_called()
    assert db.query(PaymentIntent).count() == 0


async def test_product_amount_mismatch_rejected(db, engine, gateway, buyer, product, gateway_settings):
    """Price 300, submitted 250: rejected before any gateway call"""
    with pytest.raises(AmountMismatchError):
        await engine.create_intent(buyer, 250, product_id=product.id)

    gateway.create_transaction.assert_not_called()
    assert db.query(PaymentIntent).count() == 0


async def test_product_purchase_creates_product_bound_intent(db, engine, gateway, buyer, product, gateway_settings):
    result = await engine.create_intent(buyer, 300, method="card", product_id=product.id)

    assert isinstance(result, IntentCreated)
    intent = get_intent(db, "tx-1")
    assert intent.product_id == product.id
    assert intent.amount == 300
    assert gateway.create_transaction.call_args.kwargs["description"] == "Purchase: Exam answers pack"


async def test_unknown_product_rejected(db, engine, gateway, buyer, gateway_settings):
    with pytest.raises(ProductNotFoundError):
        await engine.create_intent(buyer, 300, product_id=999)
    gateway.create_transaction.assert_not_called()


async def test_gateway_not_configured(db, engine, gateway, buyer):
    with pytest.raises(GatewayNotConfiguredError):
        await engine.create_intent(buyer, 500)

    gateway.create_transaction.assert_not_called()
    assert db.query(PaymentIntent).count() == 0


async def test_gateway_error_persists_nothing(db, engine, gateway, buyer, gateway_settings):
    gateway.create_transaction.side_effect = GatewayError("Merchant is blocked", status_code=403)

    with pytest.raises(GatewayError) as exc_info:
        await engine.create_intent(buyer, 500)

    assert exc_info.value.message == "Merchant is blocked"
    assert db.query(PaymentIntent).count() == 0


@pytest.mark.parametrize(
    "tag,code",
    [("sbp", 2), ("card", 10), ("CRYPTO", 13), ("bitcoin", 2), (None, 2)],
)
async def test_payment_method_mapping(engine, gateway, buyer, gateway_settings, tag, code):
    await engine.create_intent(buyer, 500, method=tag)
    assert gateway.create_transaction.call_args.kwargs["method"] == code


async def test_demo_mode_bypasses_gateway(db, engine, gateway, buyer, admin, product, gateway_settings):
    """Demo purchase: credential and purchase recorded, no intent, no gateway call"""
    SettingsRepository(db).set_value("demo_mode", "true")
    db.commit()

    result = await engine.create_intent(buyer, 300, product_id=product.id)

    assert isinstance(result, DemoPurchase)
    assert result.redirect == f"/delivery/{result.delivery_token}"
    gateway.create_transaction.assert_not_called()
    assert db.query(PaymentIntent).count() == 0
    assert db.query(Purchase).filter(Purchase.user_id == buyer.id).count() == 1

    credential = db.query(DeliveryCredential).filter(DeliveryCredential.token == result.delivery_token).one()
    assert credential.payment_intent_id is None
    assert credential.delivery_content == "https://files.example/pack-v1.zip"

    notification = db.query(Notification).filter(Notification.user_id == admin.id).one()
    assert notification.type == "purchase"
    assert "(demo)" in notification.body


async def test_demo_mode_does_not_apply_to_topups(db, engine, gateway, buyer, gateway_settings):
    SettingsRepository(db).set_value("demo_mode", "1")
    db.commit()

    result = await engine.create_intent(buyer, 500)

    assert isinstance(result, IntentCreated)
    gateway.create_transaction.assert_awaited_once()


# ----------------------------------------------------------------------
# confirm
# ----------------------------------------------------------------------


def test_confirm_topup_credits_exactly_once(db, engine, buyer, admin):
    """Webhook retry after a successful confirmation changes nothing"""
    pending_intent(db, buyer.id, 500, "tx-topup")

    first = engine.confirm("tx-topup", ConfirmationSource.WEBHOOK)
    second = engine.confirm("tx-topup", ConfirmationSource.WEBHOOK)

    assert first.credited is True
    assert second.credited is False

    db.refresh(buyer)
    assert buyer.balance == 500
    intent = get_intent(db, "tx-topup")
    assert intent.status == IntentStatus.CONFIRMED.value
    assert intent.confirmed_at is not None

    notifications = db.query(Notification).all()
    assert len(notifications) == 1
    assert notifications[0].type == "topup"
    assert "Buyer One" in notifications[0].body


def test_confirm_unknown_transaction_is_noop(db, engine, buyer):
    result = engine.confirm("tx-unknown", ConfirmationSource.POLL)

    assert result.credited is False
    assert result.delivery_token is None
    db.refresh(buyer)
    assert buyer.balance == 0


def test_confirm_product_uses_content_at_confirmation(db, engine, buyer, product):
    """Delivery content edited after intent creation is what the buyer receives"""
    pending_intent(db, buyer.id, 300, "tx-product", product_id=product.id)
    product.delivery_content = "https://files.example/pack-v2.zip"
    db.commit()

    result = engine.confirm("tx-product", ConfirmationSource.POLL)

    assert result.credited is True
    assert result.product_id == product.id
    assert result.delivery_token

    credential = db.query(DeliveryCredential).filter(DeliveryCredential.token == result.delivery_token).one()
    assert credential.delivery_content == "https://files.example/pack-v2.zip"
    assert credential.product_name == "Exam answers pack"
    assert credential.user_id == buyer.id

    purchase = db.query(Purchase).filter(Purchase.user_id == buyer.id).one()
    assert purchase.delivery_content == "https://files.example/pack-v2.zip"

    db.refresh(buyer)
    assert buyer.balance == 0


def test_confirm_product_removed_credits_wallet(db, engine, buyer, product):
    pending_intent(db, buyer.id, 300, "tx-gone", product_id=product.id)
    db.delete(product)
    db.commit()

    result = engine.confirm("tx-gone", ConfirmationSource.WEBHOOK)

    assert result.credited is True
    assert result.delivery_token is None
    db.refresh(buyer)
    assert buyer.balance == 300
    assert db.query(DeliveryCredential).count() == 0


def test_notification_failure_keeps_credit(db, gateway, config_provider, buyer):
    notifier = Mock(spec=NotificationSink)
    notifier.notify_admins.side_effect = RuntimeError("notification store down")
    engine = ReconciliationEngine(db, gateway, config_provider, notifier=notifier)
    pending_intent(db, buyer.id, 500, "tx-notify")

    result = engine.confirm("tx-notify", ConfirmationSource.WEBHOOK)

    assert result.credited is True
    notifier.notify_admins.assert_called_once()
    db.refresh(buyer)
    assert buyer.balance == 500
    assert get_intent(db, "tx-notify").status == IntentStatus.CONFIRMED.value


def test_failed_fulfillment_leaves_intent_pending(db, engine, buyer, product):
    """An error mid-confirmation rolls back both the flip and the fulfillment"""
    pending_intent(db, buyer.id, 300, "tx-fail", product_id=product.id)
    engine.issuer.issue = Mock(side_effect=RuntimeError("disk full"))

    with pytest.raises(RuntimeError):
        engine.confirm("tx-fail", ConfirmationSource.WEBHOOK)

    assert get_intent(db, "tx-fail").status == IntentStatus.PENDING.value
    assert db.query(Purchase).count() == 0


# ----------------------------------------------------------------------
# cancel / webhook dispatch
# ----------------------------------------------------------------------


def test_cancel_is_terminal(db, engine, buyer):
    pending_intent(db, buyer.id, 500, "tx-cancel")

    assert engine.cancel("tx-cancel", "CANCELED") is True
    late = engine.confirm("tx-cancel", ConfirmationSource.WEBHOOK)

    assert late.credited is False
    assert get_intent(db, "tx-cancel").status == IntentStatus.CANCELED.value
    db.refresh(buyer)
    assert buyer.balance == 0


def test_chargeback_on_confirmed_intent_notifies_admins(db, engine, buyer, admin):
    pending_intent(db, buyer.id, 500, "tx-cb")
    engine.confirm("tx-cb", ConfirmationSource.WEBHOOK)

    assert engine.cancel("tx-cb", "CHARGEBACKED") is False

    assert get_intent(db, "tx-cb").status == IntentStatus.CONFIRMED.value
    db.refresh(buyer)
    assert buyer.balance == 500
    types = sorted(n.type for n in db.query(Notification).all())
    assert types == ["chargeback", "topup"]


def test_receive_webhook_ignores_other_statuses(db, engine, buyer):
    pending_intent(db, buyer.id, 500, "tx-wait")

    result = engine.receive_webhook(WebhookEvent(id="tx-wait", status="PENDING"))

    assert result.credited is False
    assert get_intent(db, "tx-wait").status == IntentStatus.PENDING.value


# ----------------------------------------------------------------------
# check_return
# ----------------------------------------------------------------------


async def test_check_return_without_intents(engine, gateway, buyer):
    result = await engine.check_return(buyer)

    assert result.status == "NONE"
    assert result.credited is False
    gateway.get_status.assert_not_called()


async def test_check_return_confirms_product_purchase(db, engine, gateway, buyer, product, gateway_settings):
    """Poll observes CONFIRMED: purchase recorded, token returned, balance untouched"""
    pending_intent(db, buyer.id, 300, "tx-poll", product_id=product.id)
    gateway.get_status.return_value = "CONFIRMED"

    result = await engine.check_return(buyer)

    assert result.status == "CONFIRMED"
    assert result.credited is True
    assert result.product_id == product.id
    assert result.delivery_token
    gateway.get_status.assert_awaited_once_with("tx-poll")
    assert db.query(Purchase).count() == 1
    db.refresh(buyer)
    assert buyer.balance == 0


async def test_check_return_reports_pending_without_mutation(db, engine, gateway, buyer, gateway_settings):
    pending_intent(db, buyer.id, 500, "tx-slow")

    result = await engine.check_return(buyer)

    assert result.status == "PENDING"
    assert result.credited is False
    assert get_intent(db, "tx-slow").status == IntentStatus.PENDING.value


async def test_check_return_after_webhook_returns_issued_token(db, engine, gateway, buyer, product, gateway_settings):
    """Webhook fulfilled first; the returning browser still gets its token"""
    pending_intent(db, buyer.id, 300, "tx-first", product_id=product.id)
    confirmed = engine.confirm("tx-first", ConfirmationSource.WEBHOOK)

    result = await engine.check_return(buyer)

    assert result.status == "CONFIRMED"
    assert result.credited is True
    assert result.delivery_token == confirmed.delivery_token
    gateway.get_status.assert_not_called()


async def test_check_return_gateway_error_keeps_pending(db, engine, gateway, buyer, gateway_settings):
    pending_intent(db, buyer.id, 500, "tx-down")
    gateway.get_status.side_effect = GatewayError("Payment gateway timeout after 10.0s")

    with pytest.raises(GatewayError):
        await engine.check_return(buyer)

    assert get_intent(db, "tx-down").status == IntentStatus.PENDING.value


async def test_check_return_marks_canceled(db, engine, gateway, buyer, gateway_settings):
    pending_intent(db, buyer.id, 500, "tx-void")
    gateway.get_status.return_value = "CANCELED"

    result = await engine.check_return(buyer)

    assert result.status == "CANCELED"
    assert result.credited is False
    assert get_intent(db, "tx-void").status == IntentStatus.CANCELED.value


async def test_check_return_after_later_topup_has_nothing_to_deliver(db, engine, gateway, buyer, product, gateway_settings):
    """A top-up confirmed after a purchase must not send the buyer back to the old delivery page"""
    pending_intent(db, buyer.id, 300, "tx-old-purchase", product_id=product.id)
    engine.confirm("tx-old-purchase", ConfirmationSource.WEBHOOK)
    pending_intent(db, buyer.id, 500, "tx-new-topup")
    engine.receive_webhook(WebhookEvent(id="tx-new-topup", status="CONFIRMED"))

    result = await engine.check_return(buyer)

    assert result.status == "NONE"
    assert result.credited is False
    assert result.delivery_token is None
    gateway.get_status.assert_not_called()
