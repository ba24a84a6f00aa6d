from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.db import get_session
from mercato.core.security import require_basic_auth
from mercato.models.escrow import EscrowTransaction
from mercato.schemas.commission import EscrowOut
from mercato.services.escrow import get_escrow_for_sub_order, process_eligible_escrows, release_escrow


router = APIRouter()


@router.get("/sub-orders/{sub_order_id}", response_model=EscrowOut)
async def get_sub_order_escrow(sub_order_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> EscrowOut:
    escrow = await get_escrow_for_sub_order(session, sub_order_id)
    if escrow is None:
        raise HTTPException(status_code=404, detail="Not found")
    return EscrowOut.model_validate(escrow)


@router.post("/process-eligible")
async def process_eligible_endpoint(
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> dict[str, int]:
    async with session.begin():
        released = await process_eligible_escrows(session, actor=actor)
    return {"released": released}


@router.post("/{escrow_id}/release", response_model=EscrowOut)
async def release_escrow_endpoint(
    escrow_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> EscrowOut:
    try:
        async with session.begin():
            await release_escrow(session, actor=actor, escrow_id=escrow_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    escrow = await session.get(EscrowTransaction, escrow_id, populate_existing=True)
    return EscrowOut.model_validate(escrow)
