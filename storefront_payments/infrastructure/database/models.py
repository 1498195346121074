"""SQLAlchemy ORM models for the ledger, payment intents and delivery credentials"""

from sqlalchemy import Column, String, BigInteger, Boolean, DateTime, Integer, ForeignKey, Text
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from storefront_payments.domain.models import IntentStatus

Base = declarative_base()


class User(Base):
    """Site account; balance is kept in minor currency units"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), nullable=False, unique=True)
    display_name = Column(Text, nullable=True)
    role = Column(String(32), nullable=False, default="user")  # user | admin | superadmin
    balance = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "superadmin")

    @property
    def public_name(self) -> str:
        return self.display_name or self.username or "User"


class Product(Base):
    """Catalog item; delivery_content is revealed to the buyer after payment"""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(BigInteger, nullable=False)
    image = Column(Text, nullable=True)
    category = Column(Text, nullable=True)
    delivery_content = Column(Text, nullable=True)


class Purchase(Base):
    """Ownership grant recorded when a product is paid for"""

    __tablename__ = "purchases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    delivery_content = Column(Text, nullable=True)
    purchased_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PaymentIntent(Base):
    """Payment attempt handed to the gateway, keyed by the gateway transaction id"""

    __tablename__ = "payment_intents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    gateway_transaction_id = Column(Text, nullable=False, unique=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    payment_method = Column(String(32), nullable=True)
    status = Column(String(16), nullable=False, default=IntentStatus.PENDING.value, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)


class DeliveryCredential(Base):
    """Bearer token granting read access to a product's delivery content"""

    __tablename__ = "delivery_credentials"

    token = Column(String(128), primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    product_name = Column(Text, nullable=True)
    delivery_content = Column(Text, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    payment_intent_id = Column(Integer, ForeignKey("payment_intents.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    product = relationship("Product")


class Notification(Base):
    """Admin notification center entry"""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(32), nullable=False)
    title = Column(Text, nullable=False)
    body = Column(Text, nullable=True)
    link = Column(Text, nullable=True)
    payload = Column(Text, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Setting(Base):
    """Operator-editable key/value configuration"""

    __tablename__ = "settings"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False, default="")
