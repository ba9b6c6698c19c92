"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every mutating service.  Building-block services (ledger, auditor,
    sequence) only ``flush()``; entry-point services (fulfillment,
    transfers, admin) own the transaction when constructed with
    ``auto_commit=True`` and leave it to the caller otherwise.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Failure modes:
    - A building-block service that commits would break the atomicity of
      the entry point that called it.
"""

from abc import ABC

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from stock_kernel.exceptions import StorageFailureError


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Guarantees:
        - With ``auto_commit=False`` (the default for building blocks) the
          service never calls ``commit()`` or ``rollback()``.

    Non-goals:
        - Does NOT provide query-only (read) methods -- those belong
          in ``stock_kernel/selectors/``.
    """

    def __init__(self, session: Session, auto_commit: bool = False):
        self.session = session
        self._auto_commit = auto_commit

    def _commit(self) -> None:
        if self._auto_commit:
            self.session.commit()

    def _rollback(self) -> None:
        if self._auto_commit:
            self.session.rollback()

    @staticmethod
    def _storage_failure(operation: str, exc: DBAPIError) -> StorageFailureError:
        return StorageFailureError(operation, str(exc.orig if exc.orig is not None else exc))
