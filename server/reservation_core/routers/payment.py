"""Payment router: checkout sessions, confirmation and gateway webhooks."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_current_user, get_db, get_gateway_registry, get_notifier
from ..core.exceptions import AuthorizationError, ProblemDetailsException
from ..gateways import GatewayRegistry
from ..schemas.booking import Booking
from ..schemas.common import PROBLEM_RESPONSES, Money
from ..schemas.payment import ConfirmPaymentRequest, OpenPaymentSessionRequest, PaymentSession, WebhookAck
from ..services.booking_store import BookingStore
from ..services.notification_service import Notifier
from ..services.payment_service import PaymentSessionService
from ..services.reconciliation_service import ReconciliationService
from .booking import booking_to_schema
from .idempotency import IDEMPOTENCY_KEY_DEPENDENCY, handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/payment", tags=["payment"], responses=PROBLEM_RESPONSES)

DB_DEPENDENCY = Depends(get_db)
USER_DEPENDENCY = Depends(get_current_user)
GATEWAYS_DEPENDENCY = Depends(get_gateway_registry)
NOTIFIER_DEPENDENCY = Depends(get_notifier)


@router.post("/session", response_model=PaymentSession)
async def open_session(
    request: OpenPaymentSessionRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = USER_DEPENDENCY,
    gateways: GatewayRegistry = GATEWAYS_DEPENDENCY,
    idempotency_key: str = IDEMPOTENCY_KEY_DEPENDENCY,
) -> JSONResponse:
    """
    Open a checkout session with the payment provider.

    This operation is idempotent based on the Idempotency-Key header.
    """
    payment_service = PaymentSessionService(db, gateways)
    requester_id = current_user["user_id"]

    async def operation():
        booking, session = await payment_service.open_session(
            request.booking_id,
            requester_id,
            provider=request.provider,
        )
        return PaymentSession(
            booking_id=str(booking.id),
            provider=session.provider,
            reference=session.reference,
            client_handle=session.client_handle,
            checkout=session.checkout,
            price=Money(amount=booking.amount, currency=booking.currency),
        ).model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            method="payment/session",
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json"),
            principal=requester_id,
            operation_func=operation,
            db=db
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error opening payment session",
            extra={"booking_id": str(request.booking_id), "idempotency_key": idempotency_key, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/confirm", response_model=Booking)
async def confirm_payment(
    request: ConfirmPaymentRequest,
    db: AsyncSession = DB_DEPENDENCY,
    current_user: dict = USER_DEPENDENCY,
    gateways: GatewayRegistry = GATEWAYS_DEPENDENCY,
    notifier: Notifier = NOTIFIER_DEPENDENCY,
) -> JSONResponse:
    """
    Confirm a booking after the client completed checkout.

    The payment is re-verified with the provider; the client's word is
    never taken for it. Repeating the call with the same reference is safe.
    """
    booking = await BookingStore(db).get_or_raise(request.booking_id)
    if booking.requester_id != current_user["user_id"]:
        raise AuthorizationError(detail="You can only confirm your own bookings")

    reconciliation = ReconciliationService(db, gateways, notifier)
    booking = await reconciliation.confirm(request.booking_id, request.reference)
    return JSONResponse(status_code=200, content=booking_to_schema(booking).model_dump(mode="json"))


@router.post("/webhook/{provider}", response_model=WebhookAck)
async def payment_webhook(
    provider: str,
    request: Request,
    db: AsyncSession = DB_DEPENDENCY,
    gateways: GatewayRegistry = GATEWAYS_DEPENDENCY,
    notifier: Notifier = NOTIFIER_DEPENDENCY,
) -> JSONResponse:
    """
    Receive a payment notification from a provider.

    Authenticated by the provider's signature rather than a bearer token.
    """
    payload = await request.body()
    reconciliation = ReconciliationService(db, gateways, notifier)
    result = await reconciliation.handle_webhook(provider, payload, dict(request.headers))

    logger.info(
        "Payment webhook processed",
        extra={"provider": provider, "outcome": result.outcome, "booking_id": result.booking_id}
    )
    response_data = WebhookAck(outcome=result.outcome, booking_id=result.booking_id)
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
