"""Data access layer for ledger, payment intent and delivery entities"""

import json
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from storefront_payments.domain.models import IntentStatus
from storefront_payments.infrastructure.database.models import (
    DeliveryCredential,
    Notification,
    PaymentIntent,
    Product,
    Purchase,
    Setting,
    User,
)
from storefront_payments.utils.date_utils import utcnow


class UserRepository:
    """Repository for user accounts and wallet balances"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def add_balance(self, user_id: int, amount: int) -> None:
        """
        Atomically increment a user's balance.

        Issued as a single UPDATE so concurrent top-ups and checkouts
        never lose each other's writes.
        """
        if amount < 0:
            raise ValueError("Balance increment must be non-negative")
        self.db.query(User).filter(User.id == user_id).update(
            {User.balance: User.balance + amount},
            synchronize_session=False,
        )

    def get_admin_ids(self) -> List[int]:
        rows = self.db.query(User.id).filter(User.role.in_(("admin", "superadmin"))).all()
        return [row.id for row in rows]


class ProductRepository:
    """Read-only access to the product catalog"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, product_id: int) -> Optional[Product]:
        return self.db.query(Product).filter(Product.id == product_id).first()


class PurchaseRepository:
    """Repository for ownership grants"""

    def __init__(self, db: Session):
        self.db = db

    def record(self, user_id: int, product_id: int, delivery_content: Optional[str]) -> Purchase:
        purchase = Purchase(
            user_id=user_id,
            product_id=product_id,
            quantity=1,
            delivery_content=delivery_content,
        )
        self.db.add(purchase)
        self.db.flush()
        return purchase


class PaymentIntentRepository:
    """Repository for the payment intent log"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        user_id: int,
        amount: int,
        gateway_transaction_id: str,
        product_id: Optional[int] = None,
        payment_method: Optional[str] = None,
    ) -> PaymentIntent:
        """Persist a PENDING intent"""
        intent = PaymentIntent(
            user_id=user_id,
            amount=amount,
            gateway_transaction_id=gateway_transaction_id,
            product_id=product_id,
            payment_method=payment_method,
            status=IntentStatus.PENDING.value,
        )
        self.db.add(intent)
        self.db.flush()  # Get ID without committing
        return intent

    def get_by_transaction_id(self, gateway_transaction_id: str) -> Optional[PaymentIntent]:
        return (
            self.db.query(PaymentIntent)
            .filter(PaymentIntent.gateway_transaction_id == gateway_transaction_id)
            .first()
        )

    def transition_from_pending(self, gateway_transaction_id: str, new_status: IntentStatus) -> bool:
        """
        Move an intent out of PENDING with a single conditional UPDATE.

        Only the caller whose statement actually changes the row gets True;
        every concurrent or later caller sees a row count of zero.
        """
        values: Dict[Any, Any] = {PaymentIntent.status: new_status.value}
        if new_status is IntentStatus.CONFIRMED:
            values[PaymentIntent.confirmed_at] = utcnow()

        updated = (
            self.db.query(PaymentIntent)
            .filter(
                PaymentIntent.gateway_transaction_id == gateway_transaction_id,
                PaymentIntent.status == IntentStatus.PENDING.value,
            )
            .update(values, synchronize_session=False)
        )
        return updated == 1

    def latest_pending_for_user(self, user_id: int) -> Optional[PaymentIntent]:
        return (
            self.db.query(PaymentIntent)
            .filter(
                PaymentIntent.user_id == user_id,
                PaymentIntent.status == IntentStatus.PENDING.value,
            )
            .order_by(PaymentIntent.id.desc())
            .first()
        )

    def latest_confirmed_for_user(self, user_id: int) -> Optional[PaymentIntent]:
        """Newest confirmed intent of any kind (top-up or purchase)"""
        return (
            self.db.query(PaymentIntent)
            .filter(
                PaymentIntent.user_id == user_id,
                PaymentIntent.status == IntentStatus.CONFIRMED.value,
            )
            .order_by(PaymentIntent.confirmed_at.desc(), PaymentIntent.id.desc())
            .first()
        )

    def count(self) -> int:
        return self.db.query(PaymentIntent).count()

    def page_with_users(self, page: int, limit: int) -> Tuple[int, List[Tuple[PaymentIntent, Optional[User]]]]:
        """Newest-first page of intents joined with their owners"""
        total = self.count()
        rows = (
            self.db.query(PaymentIntent, User)
            .outerjoin(User, PaymentIntent.user_id == User.id)
            .order_by(PaymentIntent.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
            .all()
        )
        return total, [(intent, user) for intent, user in rows]


class DeliveryCredentialRepository:
    """Repository for delivery credentials"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        token: str,
        product: Product,
        user_id: Optional[int],
        payment_intent_id: Optional[int],
    ) -> DeliveryCredential:
        credential = DeliveryCredential(
            token=token,
            product_id=product.id,
            product_name=product.name,
            delivery_content=product.delivery_content,
            user_id=user_id,
            payment_intent_id=payment_intent_id,
        )
        self.db.add(credential)
        self.db.flush()
        return credential

    def get(self, token: str) -> Optional[DeliveryCredential]:
        return self.db.query(DeliveryCredential).filter(DeliveryCredential.token == token).first()

    def get_for_intent(self, payment_intent_id: int) -> Optional[DeliveryCredential]:
        return (
            self.db.query(DeliveryCredential)
            .filter(DeliveryCredential.payment_intent_id == payment_intent_id)
            .first()
        )


class NotificationRepository:
    """Write side of the admin notification center"""

    def __init__(self, db: Session):
        self.db = db

    def create_many(
        self,
        user_ids: List[int],
        type: str,
        title: str,
        body: str,
        link: Optional[str],
        payload: Optional[Dict[str, Any]],
    ) -> None:
        encoded = json.dumps(payload, ensure_ascii=False) if payload else None
        for user_id in user_ids:
            self.db.add(
                Notification(
                    user_id=user_id,
                    type=type,
                    title=title,
                    body=body or "",
                    link=link,
                    payload=encoded,
                )
            )


class SettingsRepository:
    """Key/value settings store backing runtime configuration"""

    def __init__(self, db: Session):
        self.db = db

    def get_value(self, key: str) -> Optional[str]:
        row = self.db.query(Setting).filter(Setting.key == key).first()
        return row.value if row else None

    def set_value(self, key: str, value: str) -> None:
        row = self.db.query(Setting).filter(Setting.key == key).first()
        if row is None:
            self.db.add(Setting(key=key, value=value))
        else:
            row.value = value
        self.db.flush()
