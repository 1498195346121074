"""GET /api/delivery/{token} - Reveal purchased content to the token holder"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from storefront_payments.api.v1.schemas import DeliveryResponse
from storefront_payments.domain.delivery import DeliveryCredentialIssuer
from storefront_payments.infrastructure.database.session import get_db

router = APIRouter()


@router.get("/delivery/{token}", response_model=DeliveryResponse)
def get_delivery(token: str, db: Session = Depends(get_db)):
    """
    Resolve a delivery credential.

    No login required: the token itself is the grant. Name and content come
    from the snapshot taken at issuance; image, price and category from the
    live product when it still exists.
    """
    credential = DeliveryCredentialIssuer(db).resolve(token)
    if credential is None:
        raise HTTPException(status_code=404, detail="Delivery not found")

    product = credential.product
    return DeliveryResponse(
        product_id=credential.product_id,
        product_name=credential.product_name,
        delivery_content=credential.delivery_content,
        product_image=product.image if product else None,
        product_price=product.price if product else None,
        product_category=product.category if product else None,
    )
