"""
BaseService -- abstract base for all kernel managers.

Responsibility:
    Provides the common constructor and session-handling contract for every
    state-changing manager.  All concrete managers receive a SQLAlchemy
    ``Session`` that they use via ``session.flush()`` -- never
    ``session.commit()``.

Invariants enforced:
    - Transaction boundaries: managers flush within the caller's transaction
      and never commit or roll back themselves.  This is what lets a
      PostingGuard decision, its override entry and the guarded ledger write
      commit (or roll back) as one unit.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.policy import ControlPolicy

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel managers.

    Guarantees:
        - The manager never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT provide report-style queries -- those belong in
          ``ledger_kernel/selectors/``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: ControlPolicy | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._policy = policy or ControlPolicy()

    @property
    def policy(self) -> ControlPolicy:
        return self._policy
