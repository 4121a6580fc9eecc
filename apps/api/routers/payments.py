"""
Payment provider helpers for the goal form.

PayPal stakes need an order the payer approves before POST /goals; this
creates it with intent=AUTHORIZE so the funds are only held, never taken.
"""
import logging

from fastapi import APIRouter, Depends, status

from core.auth import RequestContext, get_request_context
from core.config import settings
from core.exceptions import ValidationError
from schemas import PayPalOrderRequest, PayPalOrderResponse
from services.payment_gateway import PayPalGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def get_paypal_gateway() -> PayPalGateway:
    """FastAPI dependency (overridable in tests)."""
    return PayPalGateway()


@router.post("/paypal/orders", response_model=PayPalOrderResponse, status_code=status.HTTP_201_CREATED)
def create_paypal_order(
    body: PayPalOrderRequest,
    ctx: RequestContext = Depends(get_request_context),
    gateway: PayPalGateway = Depends(get_paypal_gateway),
):
    if body.stake_amount > settings.MAX_STAKE_AMOUNT:
        raise ValidationError(f"stake_amount cannot exceed {settings.MAX_STAKE_AMOUNT}", field="stake_amount")

    order_id = gateway.create_order(amount=body.stake_amount)
    logger.info(
        "PayPal order created",
        extra={"extra_fields": {"user_id": str(ctx.user_id), "order_id": order_id}},
    )
    return {"id": order_id}
