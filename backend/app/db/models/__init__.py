"""Database models package."""
from app.db.models.import_job import ImportJob, ImportJobError, ImportJobLog
from app.db.models.import_source import ImportSource
from app.db.models.product import Product

__all__ = ["ImportJob", "ImportJobError", "ImportJobLog", "ImportSource", "Product"]
