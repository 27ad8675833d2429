"""
Module: ledger_kernel.models.override_log
Responsibility: ORM persistence for the append-only override log -- one row
    per explicit, justified exception to a period or lock restriction.
Architecture position: Kernel > Models.  May import from db/ and domain/states.py.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listener).
    - justification meets the configured minimum length (OverrideAuditLog).

Audit relevance:
    Every SOFT_CLOSED posting or reversal granted by PostingGuard and every
    early lock release produces exactly one OverrideLogEntry.
"""

from datetime import datetime

from sqlalchemy import JSON, Enum, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UTCDateTime
from ledger_kernel.domain.states import OverrideType


class OverrideLogEntry(Base):
    """
    Override log entry.

    Contract:
        Written only by OverrideAuditLog.record(), in the same transaction as
        the operation it authorizes.  Read only by OverrideLogSelector.
    """

    __tablename__ = "override_log_entries"

    __table_args__ = (
        Index("idx_override_tenant_created", "tenant_id", "created_at"),
        Index("idx_override_entity", "entity_type", "entity_id"),
        Index("idx_override_type", "override_type"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    override_type: Mapped[OverrideType] = mapped_column(
        Enum(OverrideType, native_enum=False, length=40),
        nullable=False,
    )

    justification: Mapped[str] = mapped_column(Text, nullable=False)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Anything else the override touched, e.g. the blocking period or lock
    affected_entities: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    override_by: Mapped[str] = mapped_column(String(100), nullable=False)
    override_by_role: Mapped[str] = mapped_column(String(50), nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<OverrideLogEntry {self.override_type.value} on {self.entity_type}:{self.entity_id}>"
