"""
Module: stock_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.
Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listener).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.
Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.
Audit relevance:
    AuditEvent IS the audit trail.  Every stock mutation -- reservation,
    receipt, safety-stock change, transfer outcome, catalog registration --
    produces an AuditEvent in the same transaction as the mutation.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Order fulfillment
    STOCK_RESERVED = "STOCK_RESERVED"

    # Ledger administration
    STOCK_RECEIVED = "STOCK_RECEIVED"
    SAFETY_STOCK_CHANGED = "SAFETY_STOCK_CHANGED"
    ALLOCATION_SET = "ALLOCATION_SET"

    # Transfers
    TRANSFER_COMPLETED = "TRANSFER_COMPLETED"
    TRANSFER_FAILED = "TRANSFER_FAILED"

    # Catalog
    PRODUCT_REGISTERED = "PRODUCT_REGISTERED"
    PRODUCT_UPDATED = "PRODUCT_UPDATED"
    WAREHOUSE_REGISTERED = "WAREHOUSE_REGISTERED"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Contract:
        AuditEvent rows are append-only, never updated or deleted.
        Each row's hash includes the previous row's hash, creating a
        tamper-evident chain.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT enforce hash correctness at INSERT time;
          that is the responsibility of AuditorService.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # e.g. "StockAllocation", "StockTransfer", "Product"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # null for the first event
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        """Check if this is the first event in the hash chain."""
        return self.prev_hash is None
