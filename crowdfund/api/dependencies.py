"""Request dependencies"""
from typing import Optional

from fastapi import Header, Request

from crowdfund.services.engine import ProposalEngine


def get_engine(request: Request) -> ProposalEngine:
    """Dependency to get the engine created by the application lifespan"""
    return request.app.state.engine


def get_idempotency_key(
    idempotency_key: Optional[str] = Header(default=None, max_length=128),
) -> Optional[str]:
    return idempotency_key
