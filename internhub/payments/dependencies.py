"""FastAPI dependencies for payments."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .service import PaymentSettlementService


async def get_payment_service(request: Request) -> PaymentSettlementService:
    """Get payment settlement service from app state.

    Unavailable when the gateway credentials are not configured.
    """
    app_state = request.app.state
    if not getattr(app_state, "payment_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment service not available",
        )
    return app_state.payment_service


PaymentServiceDep = Annotated[PaymentSettlementService, Depends(get_payment_service)]
