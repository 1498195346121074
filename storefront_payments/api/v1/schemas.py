"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional


class PaymentCreateRequest(BaseModel):
    """Request body for POST /api/payment/create"""

    model_config = ConfigDict(populate_by_name=True)

    amount: int = Field(..., description="Amount in minor currency units; checked against the minimum or the product price")
    payment_method: Optional[str] = Field(None, alias="paymentMethod", description="sbp | card | crypto")
    product_id: Optional[int] = Field(None, description="Set for a product purchase, omit for a top-up")


class PaymentCreateResponse(BaseModel):
    """Response for POST /api/payment/create (gateway or demo flavour)"""

    model_config = ConfigDict(populate_by_name=True)

    redirect: Optional[str] = None
    transaction_id: Optional[str] = Field(None, serialization_alias="transactionId")
    status: Optional[str] = None
    delivery_token: Optional[str] = None


class WebhookPayload(BaseModel):
    """Gateway callback body for POST /api/payment/webhook"""

    id: str = Field(..., min_length=1)
    status: str = Field(..., min_length=1)
    amount: Optional[float] = None
    currency: Optional[str] = None


class CheckReturnResponse(BaseModel):
    """Response for GET /api/payment/check-return"""

    status: str
    credited: bool
    product_id: Optional[int] = None
    delivery_token: Optional[str] = None
    error: Optional[str] = None


class DeliveryResponse(BaseModel):
    """Response for GET /api/delivery/{token}"""

    product_id: Optional[int] = None
    product_name: Optional[str] = None
    delivery_content: Optional[str] = None
    product_image: Optional[str] = None
    product_price: Optional[int] = None
    product_category: Optional[str] = None


class PaymentLogItem(BaseModel):
    """Single intent in the admin payment log"""

    id: int
    user_id: int
    amount: int
    gateway_transaction_id: str
    status: str
    product_id: Optional[int] = None
    payment_method: Optional[str] = None
    created_at: Optional[str] = None
    confirmed_at: Optional[str] = None
    username: Optional[str] = None
    display_name: Optional[str] = None


class PaymentLogResponse(BaseModel):
    """Response for GET /api/admin/payment-log"""

    items: List[PaymentLogItem]
    total: int
    page: int
    limit: int
    total_pages: int


class SettingUpdateRequest(BaseModel):
    """Request body for PUT /api/admin/settings/{key}"""

    value: Any = None


class SettingResponse(BaseModel):
    """Response for GET /api/settings/{key}"""

    key: str
    value: Optional[str] = None
