"""
Module: inspex_kernel.models.sequence_counter
Responsibility: Named monotonic counters, read and incremented under a row lock
    by SequenceService.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from inspex_kernel.db.base import Base


class SequenceCounter(Base):
    """Each row is a named sequence with its current value."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
