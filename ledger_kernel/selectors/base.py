"""
Module: ledger_kernel.selectors.base
Responsibility: Shared base for read-only reporting queries.
Architecture position: Kernel > Selectors.  Reads models, returns domain DTOs;
    never adds, flushes or deletes.
"""

from typing import Generic, TypeVar

from sqlalchemy import Select
from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(Generic[ModelType]):
    """Holds the caller's session; subclasses only SELECT through it."""

    def __init__(self, session: Session):
        self.session = session

    def _rows(self, stmt: Select) -> list[ModelType]:
        return list(self.session.execute(stmt).scalars().all())
