"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session contract for every write-side service.
    Services receive a SQLAlchemy ``Session`` and persist through
    ``session.flush()``; they never call ``session.commit()`` themselves.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries belong to the caller (``session_scope``, the
      API facade, or a test fixture).  A service flushes inside the caller's
      transaction so several services can compose into one atomic unit of
      work.  The only exception is a recorder built with ``auto_commit=True``.

Failure modes:
    - A subclass that commits on its own breaks the all-or-nothing guarantee
      of composed operations (for example reversal plus status change).
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage the transaction lifecycle.
        - Does NOT provide read-only query helpers; those live in
          ``ledger_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
