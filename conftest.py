"""PostgreSQL testcontainer shared by the integration tests.

Trip, store, channel and clock helpers live in ``tests/conftest.py``.
"""

from __future__ import annotations

import shutil
import uuid
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from testcontainers.postgres import PostgresContainer

    from trip_dispatcher.db import Database

docker_available = shutil.which("docker") is not None


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """One PostgreSQL server per session; each test gets its own database on it."""
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16") as pg:
        yield pg


@pytest.fixture
def provisioned_database(
    postgres_container: PostgresContainer,
) -> Callable[..., AbstractAsyncContextManager[Database]]:
    """Factory for a freshly created, connected trip database.

        async with provisioned_database(schema="ops") as db:
            store = PostgresTripStore(db)
    """
    from trip_dispatcher.db import ConnectionParams, Database

    params = ConnectionParams(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        user=postgres_container.username,
        password=postgres_container.password,
    )

    @asynccontextmanager
    async def _open(*, schema: str | None = None) -> AsyncIterator[Database]:
        db = Database(f"trips_{uuid.uuid4().hex[:12]}", params, schema=schema, pool_size=(1, 3))
        await db.provision()
        await db.connect()
        try:
            yield db
        finally:
            await db.close()

    return _open
