"""
PreOrder Manager — Analytics API

On-demand aggregation over the order table; tiers are looked up at request
time, not taken from the orders.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from preorder.core.clock import date_range_for_preset, utcnow
from preorder.db.database import get_db
from preorder.db.directory import tiers_for
from preorder.models.preorder import PreOrder
from preorder.schemas.preorder import AnalyticsOut
from preorder.services.analytics import aggregate

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("", response_model=AnalyticsOut)
async def get_analytics(
    date_range: str = Query("all", pattern="^(today|tomorrow|week|all)$"),
    vendor_id: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    query = select(PreOrder).order_by(PreOrder.created_at, PreOrder.id)
    if vendor_id:
        query = query.where(PreOrder.vendor_id == vendor_id)
    orders = list((await db.execute(query)).scalars().all())
    tiers = await tiers_for(db, (order.customer_id for order in orders))
    window = date_range_for_preset(date_range, utcnow())
    return AnalyticsOut(**aggregate(orders, tiers, window).as_dict())
