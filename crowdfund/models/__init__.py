"""Database models"""
from crowdfund.models.database import Base, init_db, close_db
from crowdfund.models.proposal_event import AmountType, EventType, ProposalEvent

__all__ = [
    "Base",
    "init_db",
    "close_db",
    "AmountType",
    "EventType",
    "ProposalEvent",
]
