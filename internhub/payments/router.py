"""HTTP endpoints for payments.

Provides:
- POST /v1/payments/orders - Create a gateway order for an enrollment
- POST /v1/payments/verify - Verify the checkout callback and settle
- POST /v1/payments/webhook - Gateway webhook (signature-authenticated)
- GET  /v1/enrollments/{id}/payments - Payment history
- POST /v1/payments/{id}/refund - Refund (admin)
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Header, Request, status

from internhub.auth.dependencies import AdminUser, CurrentUser
from internhub.auth.permissions import is_staff
from internhub.core.exceptions import DomainError, handle_domain_error

from .dependencies import PaymentServiceDep
from .schemas import (
    CreateOrderRequest,
    OrderResponse,
    PaymentResponse,
    RefundRequest,
    RefundResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookResponse,
)


router = APIRouter(tags=["payments"])


@router.post(
    "/v1/payments/orders",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payment order",
)
async def create_order(
    data: CreateOrderRequest,
    service: PaymentServiceDep,
    current_user: CurrentUser,
) -> OrderResponse:
    try:
        order = await service.create_order(data.enrollment_id, current_user.id)
    except DomainError as e:
        raise handle_domain_error(e) from e
    return OrderResponse.from_descriptor(order)


@router.post(
    "/v1/payments/verify",
    response_model=VerifyPaymentResponse,
    summary="Verify a checkout payment",
)
async def verify_payment(
    data: VerifyPaymentRequest,
    service: PaymentServiceDep,
    current_user: CurrentUser,
) -> VerifyPaymentResponse:
    """Settle the payment; repeating the call returns the settled payment."""
    try:
        result = await service.verify_payment(
            order_id=data.razorpay_order_id,
            external_payment_id=data.razorpay_payment_id,
            signature=data.razorpay_signature,
            enrollment_id=data.enrollment_id,
            requester_id=current_user.id,
        )
    except DomainError as e:
        raise handle_domain_error(e) from e
    return VerifyPaymentResponse(
        payment=PaymentResponse.from_payment(result.payment),
        already_settled=result.already_settled,
    )


@router.post(
    "/v1/payments/webhook",
    response_model=WebhookResponse,
    summary="Payment gateway webhook",
)
async def payment_webhook(
    request: Request,
    service: PaymentServiceDep,
    x_razorpay_signature: Annotated[str | None, Header()] = None,
    x_razorpay_event_id: Annotated[str | None, Header()] = None,
) -> WebhookResponse:
    """No bearer auth; the body signature authenticates the gateway."""
    body = await request.body()
    try:
        result = await service.handle_webhook(
            body, x_razorpay_signature, x_razorpay_event_id
        )
    except DomainError as e:
        raise handle_domain_error(e) from e
    return WebhookResponse(
        event_id=result.event_id,
        processed=result.processed,
        duplicate=result.duplicate,
    )


@router.get(
    "/v1/enrollments/{enrollment_id}/payments",
    response_model=list[PaymentResponse],
    summary="Payment history of an enrollment",
)
async def list_payments(
    enrollment_id: UUID,
    service: PaymentServiceDep,
    current_user: CurrentUser,
) -> list[PaymentResponse]:
    try:
        payments = await service.list_payments(
            enrollment_id, current_user.id, allow_staff=is_staff(current_user.role)
        )
    except DomainError as e:
        raise handle_domain_error(e) from e
    return [PaymentResponse.from_payment(p) for p in payments]


@router.post(
    "/v1/payments/{payment_id}/refund",
    response_model=RefundResponse,
    summary="Refund a payment (admin)",
)
async def refund_payment(
    payment_id: UUID,
    data: RefundRequest,
    service: PaymentServiceDep,
    admin: AdminUser,
) -> RefundResponse:
    try:
        result = await service.refund(
            payment_id=payment_id,
            amount=data.amount,
            reason=data.reason,
            processed_by=admin.id,
        )
    except DomainError as e:
        raise handle_domain_error(e) from e
    return RefundResponse(
        payment=PaymentResponse.from_payment(result.payment),
        refund_id=result.refund_id,
        amount=result.amount,
        is_full_refund=result.is_full_refund,
    )
