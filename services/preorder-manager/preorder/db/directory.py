"""
PreOrder Manager — Read-only vendor and customer lookups
"""
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from preorder.core.errors import VendorNotFound
from preorder.models.directory import Customer, CustomerTier, Vendor


async def get_vendor(db: AsyncSession, vendor_id: str, require_active: bool = True) -> Vendor:
    result = await db.execute(select(Vendor).where(Vendor.id == vendor_id))
    vendor = result.scalar_one_or_none()
    if vendor is None or (require_active and not vendor.is_active):
        raise VendorNotFound(vendor_id)
    return vendor


async def get_customer(db: AsyncSession, customer_id: str) -> Customer | None:
    result = await db.execute(select(Customer).where(Customer.id == customer_id))
    return result.scalar_one_or_none()


async def get_tier(db: AsyncSession, customer_id: str) -> CustomerTier:
    """Unknown customers book with the standard window."""
    customer = await get_customer(db, customer_id)
    if customer is None:
        return CustomerTier.STANDARD
    return CustomerTier(customer.tier)


async def tiers_for(db: AsyncSession, customer_ids: Iterable[str]) -> dict[str, str]:
    ids = set(customer_ids)
    if not ids:
        return {}
    result = await db.execute(select(Customer.id, Customer.tier).where(Customer.id.in_(ids)))
    return {row.id: row.tier for row in result}
