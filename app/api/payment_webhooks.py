from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.db import get_db
from app.services import payment_webhooks as payment_webhooks_service

router = APIRouter(prefix="/payment-webhooks")


@router.post("/stripe", tags=["payment-webhooks"])
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    signature = request.headers.get("Stripe-Signature", "")
    return payment_webhooks_service.process_stripe_webhook(
        db=db,
        body=body,
        signature=signature,
    )


@router.post("/paypal", tags=["payment-webhooks"])
async def paypal_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    return payment_webhooks_service.process_paypal_webhook(
        db=db,
        body=body,
        headers=dict(request.headers),
    )
