"""Pytest fixtures: a file-backed SQLite job table per test, plus queue builders."""

from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.db.models.import_source import ImportSource
from app.db.session import build_engine, build_session_factory, init_db
from app.repositories.import_jobs import ImportJobRepository
from app.workers.import_queue import ImportJobQueue


@pytest.fixture
def engine(tmp_path) -> Iterator[Engine]:
    engine = build_engine(f"sqlite:///{tmp_path / 'imports.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


@pytest.fixture
def repository(session_factory) -> ImportJobRepository:
    return ImportJobRepository(session_factory)


@pytest.fixture
def make_source(session_factory) -> Callable[..., ImportSource]:
    def _make(platform: str = "csv", meta: dict | None = None, seller_id: str = "seller-1") -> ImportSource:
        source = ImportSource(seller_id=seller_id, platform=platform, status="active", meta=meta or {})
        with session_factory.begin() as session:
            session.add(source)
        return source

    return _make


@pytest.fixture
def source(make_source) -> ImportSource:
    return make_source()


@pytest.fixture
def make_queue(repository) -> Iterator[Callable[..., ImportJobQueue]]:
    queues: list[ImportJobQueue] = []

    def _make(**kwargs) -> ImportJobQueue:
        kwargs.setdefault("poll_interval_ms", 10)
        queue = ImportJobQueue(repository, **kwargs)
        queues.append(queue)
        return queue

    yield _make

    for queue in queues:
        queue.stop()
        queue.wait_for_idle(timeout=5)
        queue.close()


@pytest.fixture
def queue(make_queue) -> ImportJobQueue:
    return make_queue()
