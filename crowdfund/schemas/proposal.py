"""Proposal schemas"""
from pydantic import BaseModel, Field
from typing import Annotated, Optional, List

# Amounts are integers in minor units; floats are rejected at the boundary
Amount = Annotated[int, Field(strict=True)]


class CreateProposalRequest(BaseModel):
    proposal_id: Annotated[int, Field(strict=True)]
    proposer: str  # Wallet address of the proposer
    target: str  # Wallet address receiving the funds on execution
    min_amount: Amount
    max_amount: Amount
    investor_share_percent: Annotated[int, Field(strict=True)]
    description: Optional[str] = None


class InvestRequest(BaseModel):
    investor: str
    amount: Amount


class ProposerActionRequest(BaseModel):
    caller: str


class DistributeRequest(BaseModel):
    caller: str
    profit_amount: Amount


class ContributionResponse(BaseModel):
    investor: str
    amount: int


class PayoutResponse(BaseModel):
    recipient: str
    role: str
    amount: int
    paid: bool
    reference: Optional[str] = None


class DistributionResponse(BaseModel):
    proposal_address: str
    proposal_id: int
    status: str  # not_started, in_progress, completed
    profit_amount: Optional[int] = None
    investor_pool: Optional[int] = None
    proposer_amount: Optional[int] = None
    dust: Optional[int] = None
    paid_amount: int = 0
    started_at: Optional[int] = None
    payouts: List[PayoutResponse] = []


class ProposalResponse(BaseModel):
    address: str
    proposal_id: int
    proposer: str
    target: str
    min_amount: int
    max_amount: int
    investor_share_percent: int
    description: Optional[str] = None
    state: str
    accepting_investment: bool
    current_amount: int
    investor_count: int
    investors: List[ContributionResponse]
    created_at: int
    executed_at: Optional[int] = None
    distributed_at: Optional[int] = None
    cooldown_seconds: int
    # Derived fields
    status: str
    progress_percent: int
    progress_bps: int
    remaining_capacity: int
    threshold_reached: bool
    can_invest: bool
    can_execute: bool
    can_distribute: bool
    cooldown_ends_at: Optional[int] = None
    cooldown_remaining: Optional[int] = None
    # Viewer-specific fields, set when a viewer address is given
    is_proposer: Optional[bool] = None
    viewer_investment: Optional[int] = None


class InvestmentResponse(BaseModel):
    proposal_address: str
    proposal_id: int
    investor: str
    amount: int
    current_amount: int
    investor_share_percent: int


class DashboardStatsResponse(BaseModel):
    total_proposals: int
    active_proposals: int
    inactive_proposals: int
    executed_proposals: int
    completed_proposals: int
    total_funding: int
