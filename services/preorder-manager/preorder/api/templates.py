"""
PreOrder Manager — Recurring template API
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from preorder.core.clock import to_local, utcnow
from preorder.db.database import get_db
from preorder.db.template_ops import (
    create_template,
    list_templates,
    materialize_due_templates,
    toggle_active,
    update_template,
)
from preorder.schemas.preorder import (
    MaterializeOut,
    MaterializeRequest,
    PreOrderOut,
    TemplateCreate,
    TemplateOut,
    TemplateToggle,
    TemplateUpdate,
)
from preorder.services.change_feed import ChangeFeed, get_feed

router = APIRouter(prefix="/templates", tags=["templates"])


@router.post("", response_model=TemplateOut, status_code=status.HTTP_201_CREATED)
async def create(
    payload: TemplateCreate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
):
    return await create_template(db, payload, feed=feed)


@router.get("", response_model=list[TemplateOut])
async def list_all(
    vendor_id: str | None = None,
    active: bool | None = None,
    db: AsyncSession = Depends(get_db),
):
    return await list_templates(db, vendor_id=vendor_id, active=active)


@router.post("/materialize", response_model=MaterializeOut)
async def materialize(
    payload: MaterializeRequest,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
):
    """
    Manual daily trigger (normally Celery beat). Running it twice for the
    same day creates the orders twice.
    """
    today = payload.today or to_local(utcnow()).date()
    orders = await materialize_due_templates(db, today, feed=feed)
    return MaterializeOut(run_date=today, created=[PreOrderOut.model_validate(order) for order in orders])


@router.patch("/{template_id}", response_model=TemplateOut)
async def edit(
    template_id: str,
    payload: TemplateUpdate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
):
    return await update_template(db, template_id, payload, feed=feed)


@router.post("/{template_id}/toggle", response_model=TemplateOut)
async def toggle(
    template_id: str,
    payload: TemplateToggle,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
):
    return await toggle_active(db, template_id, payload.active, feed=feed)
