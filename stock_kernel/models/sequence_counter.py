"""
Module: stock_kernel.models.sequence_counter
Responsibility: Locked counter rows backing SequenceService.

Each row is one named sequence, e.g. "audit_event" or "PNK-20240115" for the
daily import-document counter.  Row-level locking keeps allocation
strictly increasing under concurrency.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class SequenceCounter(Base):
    """Sequence counter table."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
