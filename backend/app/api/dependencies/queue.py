"""Import queue dependency for the HTTP layer."""

from functools import lru_cache

from app.db.session import get_session_factory
from app.workers.import_queue import ImportJobQueue


@lru_cache
def get_import_queue() -> ImportJobQueue:
    """Queue used for enqueue and read-only queries; it never starts polling here."""
    return ImportJobQueue.from_settings(get_session_factory())
