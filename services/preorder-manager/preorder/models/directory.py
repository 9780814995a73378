"""
PreOrder Manager — Directory models (vendors, customers)

[CONFIG DATA] — owned by the vendor and identity directories; this service
only reads them (vendor names, custom prep settings, customer tier).
"""
import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Boolean, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from preorder.db.database import Base


class CustomerTier(str, PyEnum):
    STANDARD = "standard"
    PREMIUM = "premium"


class Vendor(Base):
    """
    [CONFIG DATA] — A food truck. ``custom_prep_minutes`` only applies while
    ``use_custom_prep`` is switched on by the vendor.
    """
    __tablename__ = "vendors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    custom_prep_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    use_custom_prep: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<Vendor id={self.id} name={self.name!r}>"


class Customer(Base):
    """
    [CONFIG DATA] — Read-only projection of the identity directory.
    """
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tier: Mapped[str] = mapped_column(String(16), default=CustomerTier.STANDARD.value, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<Customer id={self.id} tier={self.tier}>"
