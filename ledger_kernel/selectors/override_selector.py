"""
Module: ledger_kernel.selectors.override_selector
Responsibility: Read-only reporting queries over the override log.
Architecture position: Kernel > Selectors.

Audit relevance:
    This is the reporting path auditors use to list every exception granted
    for a tenant.  It is never a write path.
"""

from datetime import datetime

from sqlalchemy import func, select

from ledger_kernel.domain.dtos import OverrideLogInfo
from ledger_kernel.domain.states import OverrideType
from ledger_kernel.models.override_log import OverrideLogEntry
from ledger_kernel.selectors.base import BaseSelector


class OverrideLogSelector(BaseSelector[OverrideLogEntry]):
    """Filtered, newest-first reads of OverrideLogEntry rows."""

    def query(
        self,
        tenant_id: str,
        override_type: OverrideType | None = None,
        entity_type: str | None = None,
        override_by: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 50,
    ) -> list[OverrideLogInfo]:
        """
        Override entries for a tenant, newest first.

        ``since`` is inclusive, ``until`` exclusive.
        """
        stmt = select(OverrideLogEntry).where(OverrideLogEntry.tenant_id == tenant_id)
        if override_type is not None:
            stmt = stmt.where(OverrideLogEntry.override_type == override_type)
        if entity_type is not None:
            stmt = stmt.where(OverrideLogEntry.entity_type == entity_type)
        if override_by is not None:
            stmt = stmt.where(OverrideLogEntry.override_by == override_by)
        if since is not None:
            stmt = stmt.where(OverrideLogEntry.created_at >= since)
        if until is not None:
            stmt = stmt.where(OverrideLogEntry.created_at < until)

        stmt = stmt.order_by(OverrideLogEntry.created_at.desc()).limit(limit)
        return [OverrideLogInfo.from_model(row) for row in self._rows(stmt)]

    def get(self, entry_id, tenant_id: str) -> OverrideLogInfo | None:
        row = self.session.execute(
            select(OverrideLogEntry).where(
                OverrideLogEntry.id == entry_id,
                OverrideLogEntry.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        return OverrideLogInfo.from_model(row) if row is not None else None

    def count(self, tenant_id: str, entity_type: str | None = None) -> int:
        stmt = select(func.count()).select_from(OverrideLogEntry).where(
            OverrideLogEntry.tenant_id == tenant_id
        )
        if entity_type is not None:
            stmt = stmt.where(OverrideLogEntry.entity_type == entity_type)
        return self.session.execute(stmt).scalar_one()
