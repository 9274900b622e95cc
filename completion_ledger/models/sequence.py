"""
Module: completion_ledger.models.sequence
Responsibility: Named counters behind invoice numbering.
Architecture position: Ledger > Models.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from completion_ledger.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is a named sequence (one per invoice prefix) with its current
    value.  Row-level locking keeps it monotonic under concurrency.
    """

    __tablename__ = "completion_sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
