"""
Module: ledger_kernel.models.sequence
Responsibility: ORM persistence for named counters used by SequenceService --
    posting sequence numbers and the per-prefix account code counters.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per sequence name (UNIQUE), locked FOR UPDATE on every
      allocation so concurrent transactions never receive the same value.

Failure modes:
    - IntegrityError when two transactions create the same counter row at
      once (handled by SequenceService with a savepoint and re-read).
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "posting", "account_code:10")
    name: Mapped[str] = mapped_column(
        String(80),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
