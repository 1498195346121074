"""Delivery credentials: bearer tokens that reveal purchased content without a login"""

import secrets
from typing import Optional

from sqlalchemy.orm import Session

from storefront_payments.infrastructure.database.models import DeliveryCredential
from storefront_payments.infrastructure.database.repositories import (
    DeliveryCredentialRepository,
    ProductRepository,
)
from storefront_payments.infrastructure.observability.metrics import delivery_credentials_counter

# 32 random bytes, ~43 url-safe characters
TOKEN_BYTES = 32


class DeliveryCredentialIssuer:
    """
    Mints and resolves delivery credentials.

    The product name and delivery content are snapshotted at issuance.
    Tokens never expire and are never rotated: whoever holds the URL can
    read the content.
    """

    def __init__(self, db: Session):
        self.db = db
        self.credentials = DeliveryCredentialRepository(db)
        self.products = ProductRepository(db)

    def issue(
        self,
        product_id: int,
        user_id: Optional[int] = None,
        payment_intent_id: Optional[int] = None,
    ) -> Optional[str]:
        """
        Persist a credential for the product's current content.

        Flushes only; the caller owns the transaction.

        Returns:
            The token, or None if the product does not exist
        """
        product = self.products.get(product_id)
        if product is None:
            return None

        token = secrets.token_urlsafe(TOKEN_BYTES)
        self.credentials.create(token, product, user_id=user_id, payment_intent_id=payment_intent_id)
        delivery_credentials_counter.inc()
        return token

    def resolve(self, token: str) -> Optional[DeliveryCredential]:
        if not token:
            return None
        return self.credentials.get(token)

    def find_for_intent(self, payment_intent_id: int) -> Optional[DeliveryCredential]:
        return self.credentials.get_for_intent(payment_intent_id)
