from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from portal.core.logger_factory import setup_logger
from portal.database.db import upsert_insert
from portal.domain.errors import LedgerUnavailableError
from portal.models.counters import CapacityCounter

logger = setup_logger(__name__)


class CapacityLedger:
    """Admitted-registration counts per event.

    Every change is one conditional UPDATE executed in the caller's
    transaction, so the check and the increment cannot interleave with
    another request.
    """

    def _ensure_counter(self, db: Session, event_id: int) -> None:
        stmt = (
            upsert_insert(db.get_bind(), CapacityCounter.__table__)
            .values(event_id=event_id, admitted_count=0)
            .on_conflict_do_nothing(index_elements=["event_id"])
        )
        db.execute(stmt)

    def try_reserve(self, db: Session, event_id: int, ceiling: int | None) -> bool:
        """Take one unit of capacity if ``admitted_count < ceiling``.

        A ceiling of None means unlimited.
        """
        stmt = update(CapacityCounter).where(CapacityCounter.event_id == event_id)
        if ceiling is not None:
            stmt = stmt.where(CapacityCounter.admitted_count < ceiling)
        stmt = stmt.values(admitted_count=CapacityCounter.admitted_count + 1)
        try:
            self._ensure_counter(db, event_id)
            res = db.execute(stmt, execution_options={"synchronize_session": False})
        except OperationalError as e:
            logger.error(f"Capacity reservation failed for event {event_id}: {e}")
            raise LedgerUnavailableError(event_id) from e
        return res.rowcount == 1  # type: ignore

    def release(self, db: Session, event_id: int) -> None:
        """Give one unit back; the count never drops below zero."""
        stmt = (
            update(CapacityCounter)
            .where(CapacityCounter.event_id == event_id)
            .where(CapacityCounter.admitted_count > 0)
            .values(admitted_count=CapacityCounter.admitted_count - 1)
        )
        try:
            res = db.execute(stmt, execution_options={"synchronize_session": False})
        except OperationalError as e:
            logger.error(f"Capacity release failed for event {event_id}: {e}")
            raise LedgerUnavailableError(event_id) from e
        if res.rowcount != 1:  # type: ignore
            logger.warning(f"Release on event {event_id} found nothing to release")

    def admitted_count(self, db: Session, event_id: int) -> int:
        count = db.scalar(
            select(CapacityCounter.admitted_count).where(CapacityCounter.event_id == event_id)
        )
        return int(count or 0)
