"""
Module: ledger_kernel.models.ledger_lock
Responsibility: ORM persistence for date-range ledger locks (period, audit and
    reconciliation freezes).
Architecture position: Kernel > Models.  May import from db/ and domain/states.py.

Invariants enforced:
    - No two ACTIVE locks of the same tenant overlap (inclusive ranges, any
      lock type).  LedgerLockManager checks first; the storage guard below
      rejects the second of two concurrent writers that both passed:
        PostgreSQL  ex_active_lock_overlap, an EXCLUDE constraint over
                    (tenant_id =, daterange(start, end, '[]') &&) on
                    ACTIVE rows (btree_gist)
        SQLite      BEFORE INSERT / UPDATE triggers raising ABORT
    - PERIOD_LOCK rows reference the HARD_CLOSED period that owns them.

Failure modes:
    - IntegrityError on an overlapping ACTIVE range (translated to
      LockOverlapError).
    - ImmutabilityViolationError on changes to a RELEASED lock or to the
      status of a PERIOD_LOCK.

Audit relevance:
    Locks are the freeze mechanism auditors rely on.  Apply and release each
    produce a LedgerAuditEvent; early releases also produce an override entry.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import DDL, Date, Enum, ForeignKey, Index, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from ledger_kernel.domain.states import LockStatus, LockType


class LedgerLock(TrackedBase):
    """
    Date-range restriction blocking postings and reversals.

    Contract:
        An ACTIVE lock blocks every posting or reversal whose transaction date
        falls inside [lock_start_date, lock_end_date].  Reads are never blocked.
    """

    __tablename__ = "ledger_locks"

    __table_args__ = (
        Index("idx_lock_tenant_status_dates", "tenant_id", "lock_status", "lock_start_date", "lock_end_date"),
        Index("idx_lock_period", "accounting_period_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    lock_type: Mapped[LockType] = mapped_column(
        Enum(LockType, native_enum=False, length=30),
        nullable=False,
    )

    # Locked range (inclusive calendar dates)
    lock_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    lock_end_date: Mapped[date] = mapped_column(Date, nullable=False)

    lock_status: Mapped[LockStatus] = mapped_column(
        Enum(LockStatus, native_enum=False, length=20),
        default=LockStatus.ACTIVE,
        nullable=False,
    )

    reason: Mapped[str] = mapped_column(Text, nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    accounting_period_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounting_periods.id"),
        nullable=True,
    )

    locked_by: Mapped[str] = mapped_column(String(100), nullable=False)
    locked_by_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    locked_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    released_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    release_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<LedgerLock {self.lock_type.value} "
            f"{self.lock_start_date}..{self.lock_end_date}: {self.lock_status.value}>"
        )


# =============================================================================
# Storage-level overlap guard
# =============================================================================

OVERLAP_CONSTRAINT_NAME = "ex_active_lock_overlap"

_SQLITE_OVERLAP_CHECK = """
BEGIN
    SELECT RAISE(ABORT, '{name}: ACTIVE ledger lock ranges overlap')
    WHERE EXISTS (
        SELECT 1 FROM ledger_locks other
        WHERE other.tenant_id = NEW.tenant_id
          AND other.id != NEW.id
          AND other.lock_status = 'ACTIVE'
          AND other.lock_start_date <= NEW.lock_end_date
          AND other.lock_end_date >= NEW.lock_start_date
    );
END
""".format(name=OVERLAP_CONSTRAINT_NAME)

_OVERLAP_DDL = [
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
    DDL(
        f"ALTER TABLE ledger_locks ADD CONSTRAINT {OVERLAP_CONSTRAINT_NAME} "
        "EXCLUDE USING gist ("
        "tenant_id WITH =, "
        "daterange(lock_start_date, lock_end_date, '[]') WITH &&"
        ") WHERE (lock_status = 'ACTIVE')"
    ).execute_if(dialect="postgresql"),
    DDL(
        "CREATE TRIGGER trg_ledger_lock_overlap_insert "
        "BEFORE INSERT ON ledger_locks "
        "WHEN NEW.lock_status = 'ACTIVE'" + _SQLITE_OVERLAP_CHECK
    ).execute_if(dialect="sqlite"),
    DDL(
        "CREATE TRIGGER trg_ledger_lock_overlap_update "
        "BEFORE UPDATE OF lock_status, lock_start_date, lock_end_date ON ledger_locks "
        "WHEN NEW.lock_status = 'ACTIVE'" + _SQLITE_OVERLAP_CHECK
    ).execute_if(dialect="sqlite"),
]

for _ddl in _OVERLAP_DDL:
    event.listen(LedgerLock.__table__, "after_create", _ddl)
