"""Proposal event journal model."""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, BigInteger, DateTime, JSON, Index,
    Enum as SQLEnum,
)
from sqlalchemy.types import TypeDecorator

from crowdfund.models.database import Base


class AmountType(TypeDecorator):
    """uint256 amounts stored as decimal strings; they do not fit BIGINT"""
    impl = String(78)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class EventType(str, enum.Enum):
    """All state-changing proposal events."""
    PROPOSAL_CREATE = "proposal_create"
    INVESTMENT = "investment"
    FUNDING_CLOSE = "funding_close"
    FUNDING_REOPEN = "funding_reopen"
    PROPOSAL_EXECUTE = "proposal_execute"
    PROFIT_PAYMENT = "profit_payment"
    PROFIT_DISTRIBUTE = "profit_distribute"


class ProposalEvent(Base):
    """
    Single table capturing every committed proposal transition.

    The registry is rebuilt by replaying events in id order, so every state
    change must be recorded here.
    """
    __tablename__ = "proposal_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    proposal_address = Column(String(42), nullable=False, index=True)
    proposal_id = Column(BigInteger, nullable=False, index=True)

    event_type = Column(SQLEnum(EventType), nullable=False, index=True)

    # Identities
    actor = Column(String(42), nullable=False)  # caller that issued the command
    counterparty = Column(String(42), nullable=True)  # target or payout recipient

    amount = Column(AmountType, nullable=True)
    occurred_at = Column(BigInteger, nullable=False)  # epoch seconds, engine clock

    # Retry safety
    transfer_reference = Column(String(128), nullable=True)
    transaction_id = Column(String(100), nullable=True)  # ledger receipt
    idempotency_key = Column(String(128), nullable=True, unique=True)
    request_fingerprint = Column(String(64), nullable=True)

    # Type-specific data (creation parameters, payout role, profit amount)
    data = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_proposal_events_address_id', 'proposal_address', 'id'),
    )

    def __repr__(self):
        return f"<ProposalEvent(id={self.id}, type={self.event_type}, proposal={self.proposal_id})>"
