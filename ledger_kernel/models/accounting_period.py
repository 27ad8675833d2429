"""
Module: ledger_kernel.models.accounting_period
Responsibility: ORM persistence for accounting period lifecycle -- controls
    which transaction dates accept ledger postings.
Architecture position: Kernel > Models.  May import from db/ and domain/states.py.

Invariants enforced:
    - At most one OPEN period per (tenant_id, period_type), enforced by the
      partial unique index uq_one_open_period_per_type.
    - period_start <= period_end, boundaries inclusive (service layer).
    - Contiguity of consecutive periods is checked by AccountingPeriodManager.

Failure modes:
    - IntegrityError on a second OPEN period (translated by the manager to
      OpenPeriodExistsError).
    - ImmutabilityViolationError on any change to a HARD_CLOSED period.

Audit relevance:
    AccountingPeriod rows govern the temporal boundaries of the ledger.
    Every create and close produces a LedgerAuditEvent.
"""

from datetime import date, datetime

from sqlalchemy import Date, Enum, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UTCDateTime
from ledger_kernel.domain.states import PeriodStatus, PeriodType


class AccountingPeriod(TrackedBase):
    """
    Accounting period for posting control.

    Contract:
        Created OPEN.  Moves OPEN -> SOFT_CLOSED -> HARD_CLOSED only through
        AccountingPeriodManager.close_period().  HARD_CLOSED is terminal.

    Guarantees:
        - uq_one_open_period_per_type holds under concurrent writers.
        - closed_at / closed_by are populated from the injected clock and the
          acting user on every close.
    """

    __tablename__ = "accounting_periods"

    __table_args__ = (
        Index(
            "uq_one_open_period_per_type",
            "tenant_id",
            "period_type",
            unique=True,
            postgresql_where=text("status = 'OPEN'"),
            sqlite_where=text("status = 'OPEN'"),
        ),
        Index("idx_period_tenant_type_dates", "tenant_id", "period_type", "period_start", "period_end"),
        Index("idx_period_tenant_status", "tenant_id", "status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    period_type: Mapped[PeriodType] = mapped_column(
        Enum(PeriodType, native_enum=False, length=20),
        nullable=False,
    )

    # Period boundaries (inclusive calendar dates)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        Enum(PeriodStatus, native_enum=False, length=20),
        default=PeriodStatus.OPEN,
        nullable=False,
    )

    closed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    closure_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<AccountingPeriod {self.period_type.value} "
            f"{self.period_start}..{self.period_end}: {self.status.value}>"
        )
