"""Per-day registration sequence numbers.

Both allocators hand out the next value with one atomic store operation;
nothing is read and then written back from Python.
"""

from typing import Protocol

import redis
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from portal.core.logger_factory import setup_logger
from portal.database.db import upsert_insert
from portal.domain.errors import AllocationUnavailableError
from portal.models.counters import SequenceCounter

logger = setup_logger(__name__)

SEQUENCE_KEY_TTL = 2 * 24 * 60 * 60


class SequenceAllocator(Protocol):
    def allocate(self, day: str) -> int:
        """Return the next sequence number for ``day`` (YYYY-MM-DD), starting at 1."""
        ...


def format_registration_id(day: str, sequence: int) -> str:
    """EVT-YYYY-MM-DD-NNNN"""
    year, month, dom = day.split("-")
    return f"EVT-{year}-{month}-{dom}-{sequence:04d}"


class RedisSequenceAllocator:
    """INCR on a per-day key; the key expires once the day is long gone."""

    def __init__(self, client: redis.Redis, key_prefix: str = "registration_seq") -> None:
        self._client = client
        self._key_prefix = key_prefix

    def allocate(self, day: str) -> int:
        key = f"{self._key_prefix}:{day}"
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, SEQUENCE_KEY_TTL)
            value, _ = pipe.execute()
        except redis.exceptions.RedisError as e:  # type: ignore
            logger.error(f"Sequence allocation failed for {day}: {e}")
            raise AllocationUnavailableError(day) from e
        return int(value)


class SqlSequenceAllocator:
    """Counter row per day, bumped with a single upsert ... RETURNING.

    Runs on its own connection so the row lock is held only for the
    increment, never for the caller's whole admission transaction.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def allocate(self, day: str) -> int:
        table = SequenceCounter.__table__
        stmt = (
            upsert_insert(self._engine, table)
            .values(day=day, current_value=1)
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.day],
            set_={"current_value": table.c.current_value + 1},
        ).returning(table.c.current_value)
        try:
            with self._engine.begin() as conn:
                value = conn.execute(stmt).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Sequence allocation failed for {day}: {e}")
            raise AllocationUnavailableError(day) from e
        return int(value)
