from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.db import get_session
from mercato.schemas.payments import PaymentCallback, PaymentTransactionOut
from mercato.services.payments import handle_payment_callback
from mercato.services.providers import get_payment_provider


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/payments/{provider}", response_model=PaymentTransactionOut)
async def payment_callback(
    provider: str,
    request: Request,
    signature: str | None = Header(None, alias="X-Signature"),
    session: AsyncSession = Depends(get_session),
) -> PaymentTransactionOut:
    """Provider status report. Authenticated by the body signature instead of Basic auth."""
    body = await request.body()
    if not get_payment_provider().verify_callback(body=body, signature=signature):
        logger.warning("Rejected payment callback for %s: invalid signature", provider)
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        data = PaymentCallback.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False)) from e

    try:
        async with session.begin():
            tx = await handle_payment_callback(
                session,
                actor=f"provider:{provider}",
                provider=provider,
                event_id=data.event_id,
                provider_transaction_id=data.provider_transaction_id,
                status=data.status,
                error_message=data.error_message,
                payload=data.payload,
            )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    await session.refresh(tx)
    return PaymentTransactionOut.model_validate(tx)
