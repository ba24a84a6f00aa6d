from __future__ import annotations

from fastapi import APIRouter, Depends

from mercato.api.v1.endpoints import (
    cart,
    commission,
    commission_invoices,
    escrow,
    files,
    fulfillment,
    orders,
    payments,
    payouts,
    refunds,
    returns,
    settlements,
    stores,
)
from mercato.core.security import require_basic_auth


api_router = APIRouter(dependencies=[Depends(require_basic_auth)])

api_router.include_router(files.router, prefix="/files", tags=["files"])

api_router.include_router(stores.router, prefix="/stores", tags=["stores"])
api_router.include_router(cart.router, prefix="/cart", tags=["cart"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(fulfillment.router, prefix="/fulfillment", tags=["fulfillment"])

api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(refunds.router, prefix="/refunds", tags=["refunds"])
api_router.include_router(returns.router, prefix="/returns", tags=["returns"])

api_router.include_router(escrow.router, prefix="/escrow", tags=["escrow"])
api_router.include_router(commission.router, prefix="/commission", tags=["commission"])
api_router.include_router(payouts.router, prefix="/payouts", tags=["payouts"])

api_router.include_router(settlements.router, prefix="/settlements", tags=["settlements"])
api_router.include_router(commission_invoices.router, prefix="/commission-invoices", tags=["commission-invoices"])
