"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class IntentStatus(str, Enum):
    """Local payment intent states"""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELED = "CANCELED"


class GatewayStatus:
    """Transaction statuses reported by the payment gateway"""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELED = "CANCELED"
    CHARGEBACKED = "CHARGEBACKED"

    TERMINAL_FAILURES = (CANCELED, CHARGEBACKED)


class ConfirmationSource(str, Enum):
    """Path through which a gateway confirmation was observed"""

    WEBHOOK = "webhook"
    POLL = "poll"


class PaymentMethod(str, Enum):
    """Payment method tags accepted from clients"""

    SBP = "sbp"
    CARD = "card"
    CRYPTO = "crypto"

    @property
    def gateway_code(self) -> int:
        return _GATEWAY_METHOD_CODES[self]

    @classmethod
    def from_tag(cls, tag: Optional[str]) -> "PaymentMethod":
        """Map a client tag to a method; unknown or missing tags fall back to SBP"""
        if isinstance(tag, str):
            try:
                return cls(tag.strip().lower())
            except ValueError:
                pass
        return cls.SBP


_GATEWAY_METHOD_CODES = {
    PaymentMethod.SBP: 2,
    PaymentMethod.CARD: 10,
    PaymentMethod.CRYPTO: 13,
}


@dataclass
class GatewayTransaction:
    """Transaction created at the payment gateway"""

    transaction_id: str
    redirect: Optional[str]
    status: Optional[str]


@dataclass
class IntentCreated:
    """Gateway transaction created and tracked as a pending intent"""

    redirect: Optional[str]
    transaction_id: str
    status: Optional[str]


@dataclass
class DemoPurchase:
    """Purchase fulfilled instantly in demo mode, without the gateway"""

    redirect: str
    delivery_token: str


@dataclass
class ConfirmationResult:
    """Outcome of a confirmation attempt; credited is False for no-ops"""

    credited: bool
    transaction_id: Optional[str] = None
    product_id: Optional[int] = None
    delivery_token: Optional[str] = None


@dataclass
class PollResult:
    """Outcome of the check-return poll"""

    status: str
    credited: bool
    product_id: Optional[int] = None
    delivery_token: Optional[str] = None


@dataclass
class WebhookEvent:
    """Gateway callback body"""

    id: str
    status: str
    amount: Optional[float] = None
    currency: Optional[str] = None


@dataclass
class AdminNotification:
    """Event fanned out to every administrator"""

    type: str  # "topup" | "purchase" | "chargeback"
    title: str
    body: str
    link: Optional[str] = "/admin"
    payload: Dict[str, Any] = field(default_factory=dict)
