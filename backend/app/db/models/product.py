"""Catalog products written by import processors."""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.types import DateTime

from app.db.base import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    sku = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    active = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    # Source of the most recent import that touched this row
    source_id = Column(String(36), ForeignKey("import_sources.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (Index("ix_products_sku_lower", func.lower(sku), unique=True),)
