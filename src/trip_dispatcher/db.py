"""PostgreSQL access for the trip store: connection settings and the pool."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, urlparse

import asyncpg

logger = logging.getLogger(__name__)

SSL_MODES = frozenset({"disable", "allow", "prefer", "require", "verify-ca", "verify-full"})
_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def validate_identifier(value: str, *, kind: str = "identifier") -> str:
    """Return *value* stripped if it can be interpolated as a SQL name.

    Table and schema names end up in f-string SQL, so anything other than a
    plain identifier is rejected with ``ValueError``.
    """
    name = value.strip()
    if not _IDENTIFIER.fullmatch(name):
        raise ValueError(f"Invalid {kind}: {value!r}. Expected a SQL identifier-style string.")
    return name


def _ssl_mode(raw: str | None) -> str | None:
    mode = (raw or "").strip().lower()
    if not mode:
        return None
    if mode not in SSL_MODES:
        logger.warning("Ignoring invalid PostgreSQL sslmode value: %s", raw)
        return None
    return mode


@dataclass(frozen=True)
class ConnectionParams:
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = "postgres"
    ssl: str | None = None

    @classmethod
    def from_env(cls) -> ConnectionParams:
        """Read ``DATABASE_URL``, falling back to the ``POSTGRES_*`` variables.

        The database name in the URL is ignored; the trip store names its own
        database in config.
        """
        url = os.environ.get("DATABASE_URL")
        if url:
            parsed = urlparse(url)
            return cls(
                host=parsed.hostname or cls.host,
                port=parsed.port or cls.port,
                user=parsed.username or cls.user,
                password=parsed.password or cls.password,
                ssl=_ssl_mode(parse_qs(parsed.query).get("sslmode", [None])[0]),
            )
        env = os.environ
        return cls(
            host=env.get("POSTGRES_HOST", cls.host),
            port=int(env.get("POSTGRES_PORT", cls.port)),
            user=env.get("POSTGRES_USER", cls.user),
            password=env.get("POSTGRES_PASSWORD", cls.password),
            ssl=_ssl_mode(env.get("POSTGRES_SSLMODE")),
        )

    def connect_kwargs(self, database: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": database,
        }
        if self.ssl is not None:
            kwargs["ssl"] = self.ssl
        return kwargs


async def _open_with_ssl_fallback(
    opener: Callable[..., Awaitable[Any]], params: ConnectionParams, **kwargs: Any
) -> Any:
    """Call *opener*, retrying once with ``ssl=disable``.

    Servers without TLS drop the connection during asyncpg's default SSL
    upgrade attempt; that only happens when no sslmode was configured.
    """
    try:
        return await opener(**kwargs)
    except ConnectionError as exc:
        if params.ssl is not None or "unexpected connection_lost() call" not in str(exc):
            raise
        logger.info(
            "PostgreSQL at %s refused the SSL upgrade; retrying with ssl=disable", params.host
        )
        return await opener(**{**kwargs, "ssl": "disable"})


class Database:
    """Owns the asyncpg pool for the trip database.

    When ``schema`` is set, every pooled connection runs with
    ``search_path = <schema>,public``.
    """

    def __init__(
        self,
        db_name: str,
        params: ConnectionParams | None = None,
        *,
        schema: str | None = None,
        pool_size: tuple[int, int] = (1, 10),
    ) -> None:
        self.db_name = db_name
        self.params = params or ConnectionParams()
        self.schema = validate_identifier(schema, kind="schema name") if schema else None
        self.pool_size = pool_size
        self.pool: asyncpg.Pool | None = None

    @classmethod
    def from_env(cls, db_name: str, schema: str | None = None) -> Database:
        return cls(db_name, ConnectionParams.from_env(), schema=schema)

    async def provision(self) -> None:
        """Create the database if it does not exist yet."""
        conn = await _open_with_ssl_fallback(
            asyncpg.connect, self.params, **self.params.connect_kwargs("postgres")
        )
        try:
            if await conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", self.db_name):
                return
            quoted = self.db_name.replace('"', '""')
            await conn.execute(f'CREATE DATABASE "{quoted}" TEMPLATE template0')
            logger.info("Created database %s", self.db_name)
        finally:
            await conn.close()

    async def connect(self) -> asyncpg.Pool:
        min_size, max_size = self.pool_size
        kwargs = self.params.connect_kwargs(self.db_name)
        if self.schema is not None:
            kwargs["server_settings"] = {"search_path": f"{self.schema},public"}
        self.pool = await _open_with_ssl_fallback(
            asyncpg.create_pool, self.params, min_size=min_size, max_size=max_size, **kwargs
        )
        logger.info(
            "Connected to %s on %s:%d (pool %d-%d)",
            self.db_name,
            self.params.host,
            self.params.port,
            min_size,
            max_size,
        )
        return self.pool

    async def close(self) -> None:
        if self.pool is not None:
            pool, self.pool = self.pool, None
            await pool.close()
            logger.info("Closed pool for %s", self.db_name)

    def require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise RuntimeError(f"Database '{self.db_name}' has no active connection pool")
        return self.pool

