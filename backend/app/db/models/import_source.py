"""Platform connections that import jobs pull catalogs from."""

import uuid

from sqlalchemy import Column, String
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from app.db.base import Base, JSONType


class ImportSource(Base):
    __tablename__ = "import_sources"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    seller_id = Column(String(64), nullable=False, index=True)
    platform = Column(String(32), nullable=False)  # csv, shopify, ...
    status = Column(String(16), nullable=False, default="active")
    meta = Column(JSONType)
    last_sync_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
