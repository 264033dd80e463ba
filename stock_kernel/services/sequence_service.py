"""
SequenceService -- counters behind audit sequence numbers and document codes.

Every document carries a daily code ``{PREFIX}-{YYYYMMDD}-{seq}``:

    PNK-20240115-001   first import document of 15 Jan 2024
    DH-20240115-002    second sales order that day
    ST-20240115-0001   transfers use four digits

Each ``(prefix, day)`` pair has its own row in ``sequence_counters``.  The
row is read ``FOR UPDATE``, so two transactions allocating codes for the
same day queue on it, and an allocation rolled back with its document
gives its number back.

Codes are never derived by counting or taking the max of existing
documents.
"""

from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.logging_config import get_logger
from stock_kernel.models.sequence_counter import SequenceCounter

logger = get_logger("services.sequence")


def counter_name(prefix: str, on_date: date) -> str:
    """Counter row backing ``prefix`` codes issued on ``on_date``."""
    return f"{prefix}-{on_date:%Y%m%d}"


class SequenceService:
    """Allocates values inside the caller's transaction; never commits."""

    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def _select_counter(self, name: str, lock: bool) -> SequenceCounter | None:
        stmt = select(SequenceCounter).where(SequenceCounter.name == name)
        if lock:
            stmt = stmt.with_for_update()
        return self._session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _locked_counter(self, name: str) -> SequenceCounter:
        """Lock the counter row, inserting it at zero on first use."""
        counter = self._select_counter(name, lock=True)
        if counter is not None:
            return counter
        try:
            with self._session.begin_nested():
                counter = SequenceCounter(name=name, current_value=0)
                self._session.add(counter)
        except IntegrityError:
            # Another transaction created the row first; wait on its lock.
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
            counter = self._select_counter(name, lock=True)
            if counter is None:
                raise
        return counter

    def next_value(self, name: str) -> int:
        """Increment sequence ``name`` and return the new value (first is 1)."""
        counter = self._locked_counter(name)
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        counter = self._select_counter(name, lock=False)
        return counter.current_value if counter else None

    def next_code(self, prefix: str, on_date: date, width: int = 3) -> str:
        """
        Allocate the next code for ``prefix`` on ``on_date``.

            next_code("PNK", date(2024, 1, 15)) -> "PNK-20240115-001"
        """
        name = counter_name(prefix, on_date)
        return f"{name}-{self.next_value(name):0{width}d}"
