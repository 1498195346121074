"""Payment reconciliation - turns gateway confirmations into ledger effects exactly once"""

import logging
from datetime import timedelta
from typing import Callable, Optional, Tuple

from sqlalchemy.orm import Session

from storefront_payments.config import RuntimeConfig, Settings, settings
from storefront_payments.domain.delivery import DeliveryCredentialIssuer
from storefront_payments.domain.exceptions import (
    AmountMismatchError,
    BelowMinimumError,
    GatewayNotConfiguredError,
    ProductNotFoundError,
)
from storefront_payments.domain.models import (
    AdminNotification,
    ConfirmationResult,
    ConfirmationSource,
    DemoPurchase,
    GatewayStatus,
    IntentCreated,
    IntentStatus,
    PaymentMethod,
    PollResult,
    WebhookEvent,
)
from storefront_payments.infrastructure.clients.gateway import GatewayClient
from storefront_payments.infrastructure.database.models import PaymentIntent, Product, User
from storefront_payments.infrastructure.database.repositories import (
    PaymentIntentRepository,
    ProductRepository,
    PurchaseRepository,
    UserRepository,
)
from storefront_payments.infrastructure.notifications import NotificationSink
from storefront_payments.infrastructure.observability.logging import log_confirmation
from storefront_payments.infrastructure.observability.metrics import (
    cancellation_counter,
    intent_created_counter,
    record_confirmation,
)
from storefront_payments.utils.date_utils import is_within, utcnow

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = "Payment gateway is not configured: merchant id and secret are required"


class ReconciliationEngine:
    """
    Orchestrates the payment intent lifecycle.

    Both confirmation paths (gateway webhook and client poll) funnel into
    ``confirm``. The PENDING -> CONFIRMED flip is a single conditional
    UPDATE; whichever caller's statement changes the row applies the credit
    or fulfillment in the same transaction, every other caller gets a no-op.
    """

    def __init__(
        self,
        db: Session,
        gateway: GatewayClient,
        config_provider: Callable[[], RuntimeConfig],
        issuer: Optional[DeliveryCredentialIssuer] = None,
        notifier: Optional[NotificationSink] = None,
        base_settings: Optional[Settings] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.config_provider = config_provider
        self.issuer = issuer or DeliveryCredentialIssuer(db)
        self.notifier = notifier or NotificationSink(db)
        self.settings = base_settings or settings

        self.intents = PaymentIntentRepository(db)
        self.users = UserRepository(db)
        self.products = ProductRepository(db)
        self.purchases = PurchaseRepository(db)

    # ------------------------------------------------------------------
    # Intent creation
    # ------------------------------------------------------------------

    async def create_intent(
        self,
        user: User,
        amount: int,
        method: Optional[str] = None,
        product_id: Optional[int] = None,
    ) -> IntentCreated | DemoPurchase:
        """
        Validate a payment request and hand it to the gateway.

        Flow:
        1. Product purchase: amount must equal the current price
           Top-up: amount must reach the configured minimum
        2. Demo mode + product: fulfil immediately, no intent, no gateway
        3. Create the gateway transaction
        4. Persist a PENDING intent keyed by the gateway transaction id

        Raises:
            ProductNotFoundError, AmountMismatchError, BelowMinimumError,
            GatewayNotConfiguredError, GatewayError
        """
        config = self.config_provider()

        product = None
        if product_id is not None:
            product = self.products.get(product_id)
            if product is None:
                raise ProductNotFoundError(f"Product {product_id} not found")
            if amount != product.price:
                raise AmountMismatchError(amount, product.price)
            if config.demo_mode:
                return self._demo_purchase(user, product)
        elif amount < config.min_topup_amount:
            raise BelowMinimumError(amount, config.min_topup_amount)

        if not config.gateway_configured:
            raise GatewayNotConfiguredError(NOT_CONFIGURED_MESSAGE)

        payment_method = PaymentMethod.from_tag(method)
        currency = self.settings.currency
        if product is not None:
            description = f"Purchase: {product.name}"
        else:
            description = f"Balance top-up: {amount} {currency}"

        # Nothing is persisted unless the gateway hands back a transaction id
        transaction = await self.gateway.create_transaction(
            amount=amount,
            currency=currency,
            description=description,
            success_url=f"{self.settings.site_url}/topup/success",
            failed_url=f"{self.settings.site_url}/topup?failed=1",
            payload=str(user.id),
            method=payment_method.gateway_code,
        )

        try:
            self.intents.create(
                user_id=user.id,
                amount=amount,
                gateway_transaction_id=transaction.transaction_id,
                product_id=product.id if product is not None else None,
                payment_method=payment_method.value,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        kind = "purchase" if product is not None else "topup"
        intent_created_counter.labels(kind=kind).inc()
        logger.info(
            "Payment intent created",
            extra={
                "transaction_id": transaction.transaction_id,
                "user_id": user.id,
                "amount": amount,
                "kind": kind,
                "step": "create_intent",
            },
        )

        return IntentCreated(
            redirect=transaction.redirect,
            transaction_id=transaction.transaction_id,
            status=transaction.status,
        )

    def _demo_purchase(self, user: User, product: Product) -> DemoPurchase:
        notification = self._purchase_notification(user, product, product.price, demo=True)
        try:
            self.purchases.record(user.id, product.id, product.delivery_content)
            token = self.issuer.issue(product.id, user_id=user.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        intent_created_counter.labels(kind="demo_purchase").inc()
        logger.info(
            "Demo purchase fulfilled",
            extra={"user_id": notification.payload["user_id"], "product_id": notification.payload["product_id"]},
        )
        self._emit(notification)
        return DemoPurchase(redirect=f"/delivery/{token}", delivery_token=token)

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def confirm(
        self,
        gateway_transaction_id: str,
        source: ConfirmationSource = ConfirmationSource.WEBHOOK,
    ) -> ConfirmationResult:
        """
        Apply a gateway confirmation at most once.

        Unknown or already-terminal transactions are a successful no-op.
        The admin notification is emitted after commit; its failure never
        rolls back the credit.
        """
        source = ConfirmationSource(source)

        try:
            won = self.intents.transition_from_pending(gateway_transaction_id, IntentStatus.CONFIRMED)
            if not won:
                self.db.rollback()
                record_confirmation(source.value, credited=False)
                log_confirmation(gateway_transaction_id, source.value, credited=False)
                return ConfirmationResult(credited=False, transaction_id=gateway_transaction_id)

            intent = self.intents.get_by_transaction_id(gateway_transaction_id)
            user_id, amount = intent.user_id, intent.amount
            notification, product_id, token = self._apply_confirmation(intent)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(
                "Confirmation failed, intent left PENDING",
                extra={"transaction_id": gateway_transaction_id, "source": source.value},
            )
            raise

        record_confirmation(source.value, credited=True)
        log_confirmation(
            gateway_transaction_id,
            source.value,
            credited=True,
            user_id=user_id,
            product_id=product_id,
            amount=amount,
        )
        self._emit(notification)

        return ConfirmationResult(
            credited=True,
            transaction_id=gateway_transaction_id,
            product_id=product_id,
            delivery_token=token,
        )

    def _apply_confirmation(self, intent: PaymentIntent) -> Tuple[AdminNotification, Optional[int], Optional[str]]:
        """Ledger effect of a won confirmation; runs inside the caller's transaction"""
        user = self.users.get(intent.user_id)
        tx = intent.gateway_transaction_id

        if intent.product_id is not None:
            # Re-read: an admin may have edited the content since the intent was created
            product = self.products.get(intent.product_id)
            if product is not None:
                notification = self._purchase_notification(user, product, intent.amount, transaction_id=tx)
                self.purchases.record(intent.user_id, product.id, product.delivery_content)
                token = self.issuer.issue(product.id, user_id=intent.user_id, payment_intent_id=intent.id)
                return notification, product.id, token

            logger.warning(
                "Product removed before confirmation, crediting wallet",
                extra={"transaction_id": tx, "product_id": intent.product_id},
            )
            self.users.add_balance(intent.user_id, intent.amount)
            return self._topup_notification(user, intent.amount, tx, product_removed=True), None, None

        self.users.add_balance(intent.user_id, intent.amount)
        return self._topup_notification(user, intent.amount, tx), None, None

    def cancel(
        self,
        gateway_transaction_id: str,
        gateway_status: str,
        source: ConfirmationSource = ConfirmationSource.WEBHOOK,
    ) -> bool:
        """
        Mark a PENDING intent CANCELED after the gateway reports failure.

        CANCELED is terminal, so a later CONFIRMED report for the same
        transaction is a no-op. A chargeback on an already confirmed intent
        leaves the ledger alone and is escalated to admins.
        """
        try:
            canceled = self.intents.transition_from_pending(gateway_transaction_id, IntentStatus.CANCELED)
            if canceled:
                self.db.commit()
            else:
                self.db.rollback()
        except Exception:
            self.db.rollback()
            raise

        if canceled:
            cancellation_counter.labels(gateway_status=gateway_status).inc()
            logger.info(
                "Payment intent canceled",
                extra={
                    "transaction_id": gateway_transaction_id,
                    "gateway_status": gateway_status,
                    "source": ConfirmationSource(source).value,
                },
            )
            return True

        if gateway_status == GatewayStatus.CHARGEBACKED:
            intent = self.intents.get_by_transaction_id(gateway_transaction_id)
            if intent is not None and intent.status == IntentStatus.CONFIRMED.value:
                logger.warning(
                    "Chargeback on confirmed payment",
                    extra={"transaction_id": gateway_transaction_id, "user_id": intent.user_id},
                )
                self._emit(self._chargeback_notification(intent))

        return False

    def receive_webhook(self, event: WebhookEvent) -> ConfirmationResult:
        """Dispatch a gateway callback; statuses other than confirmed/canceled are only acknowledged"""
        if event.status == GatewayStatus.CONFIRMED:
            return self.confirm(event.id, ConfirmationSource.WEBHOOK)

        if event.status in GatewayStatus.TERMINAL_FAILURES:
            self.cancel(event.id, event.status, ConfirmationSource.WEBHOOK)
        else:
            logger.info(
                "Webhook acknowledged without action",
                extra={"transaction_id": event.id, "gateway_status": event.status},
            )
        return ConfirmationResult(credited=False, transaction_id=event.id)

    # ------------------------------------------------------------------
    # Poll path
    # ------------------------------------------------------------------

    async def check_return(self, user: User) -> PollResult:
        """
        Resolve the caller's latest payment after the gateway redirect.

        Raises:
            GatewayNotConfiguredError, GatewayError
        """
        intent = self.intents.latest_pending_for_user(user.id)
        if intent is None:
            return self._recent_delivery(user.id)

        if not self.config_provider().gateway_configured:
            raise GatewayNotConfiguredError(NOT_CONFIGURED_MESSAGE)

        tx = intent.gateway_transaction_id
        intent_id, product_id = intent.id, intent.product_id

        status = await self.gateway.get_status(tx)

        if status == GatewayStatus.CONFIRMED:
            result = self.confirm(tx, ConfirmationSource.POLL)
            if result.credited:
                return PollResult(
                    status=GatewayStatus.CONFIRMED,
                    credited=True,
                    product_id=result.product_id,
                    delivery_token=result.delivery_token,
                )

            # The webhook got there first (or the intent was canceled meanwhile)
            current = self.intents.get_by_transaction_id(tx)
            if current is None or current.status != IntentStatus.CONFIRMED.value:
                return PollResult(status=current.status if current else "NONE", credited=False)

            credential = self.issuer.find_for_intent(intent_id) if product_id is not None else None
            return PollResult(
                status=GatewayStatus.CONFIRMED,
                credited=True,
                product_id=credential.product_id if credential else None,
                delivery_token=credential.token if credential else None,
            )

        if status in GatewayStatus.TERMINAL_FAILURES:
            self.cancel(tx, status, ConfirmationSource.POLL)

        return PollResult(status=status, credited=False)

    def _recent_delivery(self, user_id: int) -> PollResult:
        """
        Hand back a credential the webhook already issued before the browser returned.

        Only the most recently confirmed payment counts: a top-up confirmed
        after a purchase means there is nothing to deliver.
        """
        intent = self.intents.latest_confirmed_for_user(user_id)
        window = timedelta(minutes=self.settings.delivery_lookup_window_minutes)

        if intent is not None and intent.product_id is not None and is_within(intent.confirmed_at, window):
            credential = self.issuer.find_for_intent(intent.id)
            if credential is not None:
                return PollResult(
                    status=GatewayStatus.CONFIRMED,
                    credited=True,
                    product_id=credential.product_id,
                    delivery_token=credential.token,
                )

        return PollResult(status="NONE", credited=False)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _emit(self, notification: AdminNotification) -> None:
        try:
            self.notifier.notify_admins(notification)
        except Exception:
            # The financial effect is already committed
            self.db.rollback()
            logger.exception("Admin notification failed", extra={"type": notification.type})

    def _topup_notification(
        self,
        user: Optional[User],
        amount: int,
        transaction_id: str,
        product_removed: bool = False,
    ) -> AdminNotification:
        name = user.public_name if user else "User"
        currency = self.settings.currency
        body = f"{name} topped up the balance by {amount} {currency} (payment)"
        if product_removed:
            body = f"{name} paid {amount} {currency} for a product that no longer exists; credited to wallet"
        return AdminNotification(
            type="topup",
            title="Balance top-up",
            body=body,
            payload={
                "user_id": user.id if user else None,
                "username": user.username if user else None,
                "display_name": name,
                "amount": amount,
                "transaction_id": transaction_id,
            },
        )

    def _purchase_notification(
        self,
        user: Optional[User],
        product: Product,
        amount: int,
        transaction_id: Optional[str] = None,
        demo: bool = False,
    ) -> AdminNotification:
        name = user.public_name if user else "User"
        body = f"{name} bought {product.name} for {amount} {self.settings.currency}"
        if demo:
            body += " (demo)"
        return AdminNotification(
            type="purchase",
            title="New purchase",
            body=body,
            payload={
                "user_id": user.id if user else None,
                "username": user.username if user else None,
                "display_name": name,
                "total": amount,
                "product_id": product.id,
                "product_names": [product.name],
                "transaction_id": transaction_id,
                "demo": demo,
                "purchased_at": utcnow().isoformat(),
            },
        )

    def _chargeback_notification(self, intent: PaymentIntent) -> AdminNotification:
        return AdminNotification(
            type="chargeback",
            title="Chargeback",
            body=(
                f"Transaction {intent.gateway_transaction_id} for {intent.amount} "
                f"{self.settings.currency} was charged back"
            ),
            payload={
                "user_id": intent.user_id,
                "amount": intent.amount,
                "transaction_id": intent.gateway_transaction_id,
                "product_id": intent.product_id,
            },
        )
