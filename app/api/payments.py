from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.db import get_db
from app.schemas.payments import (
    CheckoutSessionCreate,
    CheckoutSessionRead,
    CheckoutSessionStatusRead,
)
from app.services import api_payment_webhooks as api_payment_webhooks_service
from app.services import checkout as checkout_service
from app.services.stripe_gateway import StripeGateway, get_gateway

router = APIRouter(prefix="/payments/stripe")
webhook_router = APIRouter(prefix="/payments/stripe")


@router.post(
    "/checkout",
    response_model=CheckoutSessionRead,
    status_code=status.HTTP_201_CREATED,
    tags=["payments"],
)
def create_checkout_session(
    payload: CheckoutSessionCreate,
    db: Session = Depends(get_db),
    auth: dict = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_gateway),
):
    return checkout_service.checkout_sessions.create(
        db, payload, auth["user_id"], gateway=gateway
    )


@router.get(
    "/session/{session_id}",
    response_model=CheckoutSessionStatusRead,
    tags=["payments"],
)
def get_checkout_session(
    session_id: str,
    db: Session = Depends(get_db),
    auth: dict = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_gateway),
):
    return checkout_service.checkout_sessions.get_status(
        db, session_id, auth["user_id"], gateway=gateway
    )


@webhook_router.post("/webhook", tags=["payment-events"])
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    body = await request.body()
    signature = request.headers.get("stripe-signature")
    return api_payment_webhooks_service.process_stripe_webhook(
        db=db,
        body=body,
        signature=signature,
        gateway=gateway,
    )
