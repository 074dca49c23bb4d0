# healthnet/routers/payments.py
import uuid

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import RedirectResponse
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from healthnet.core.auth import require_user
from healthnet.core.exceptions import InvalidSignature
from healthnet.core.paystack import PaystackClient, get_payment_gateway
from healthnet.database import get_session
from healthnet.models.payment import PaymentStatus
from healthnet.models.user import User
from healthnet.routers.dependencies import payment_service as service
from healthnet.schemas.payment import (
    FeeQuote,
    FeeRequest,
    PaymentDetail,
    PaymentInitialize,
    PaymentInitialized,
    PaymentRead,
    PaymentVerify,
    PaymentVerifyResult,
)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/initialize", response_model=PaymentInitialized)
def initialize_payment(
    payload: PaymentInitialize,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
    gateway: PaystackClient = Depends(get_payment_gateway),
):
    """
    Start a payment for one of the caller's unpaid orders.

    Returns the gateway checkout URL to redirect the customer to.
    """
    return service.initialize_payment(session, payload.order_id, current_user, gateway)


@router.post("/redirect")
def redirect_to_checkout(
    payload: PaymentInitialize,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
    gateway: PaystackClient = Depends(get_payment_gateway),
):
    """
    Same as /initialize but answers with a 302 to the gateway checkout page,
    or back to the frontend when the payment cannot start.
    """
    url = service.checkout_redirect(session, payload.order_id, current_user, gateway)
    return RedirectResponse(url=url, status_code=302)


@router.post("/verify", response_model=PaymentVerifyResult)
def verify_payment(
    payload: PaymentVerify,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
    gateway: PaystackClient = Depends(get_payment_gateway),
):
    return service.verify_payment(session, payload.reference, current_user, gateway)


@router.get("/callback")
def payment_callback(
    reference: str | None = None,
    trxref: str | None = None,
    session: Session = Depends(get_session),
    gateway: PaystackClient = Depends(get_payment_gateway),
):
    """
    Gateway redirect target. Always answers with a redirect to the
    frontend success or failed page.
    """
    url = service.handle_callback(session, reference or trxref, gateway)
    return RedirectResponse(url=url, status_code=302)


@router.post("/webhook/paystack")
async def paystack_webhook(
    request: Request,
    x_paystack_signature: str | None = Header(default=None),
    session: Session = Depends(get_session),
    gateway: PaystackClient = Depends(get_payment_gateway),
):
    """
    Signed gateway notifications.

    Every delivery gets {"status": "success"}, including rejected
    signatures, so the response never reveals whether a payment exists.
    """
    raw_body = await request.body()
    try:
        await run_in_threadpool(
            service.handle_webhook, session, raw_body, x_paystack_signature, gateway
        )
    except InvalidSignature:
        pass  # already logged by the service
    return {"status": "success"}


@router.post("/calculate-fees", response_model=FeeQuote)
def calculate_fees(payload: FeeRequest):
    return service.calculate_fees(payload.amount)


@router.get("/history", response_model=list[PaymentRead])
def payment_history(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
    status: PaymentStatus | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(15, ge=1, le=100),
):
    return service.get_history(session, current_user.id, status=status, skip=skip, limit=limit)


@router.get("/{payment_id}", response_model=PaymentDetail)
def get_payment(
    payment_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
):
    return service.get_payment(session, current_user.id, payment_id)
