"""Proposal API endpoints"""
from fastapi import APIRouter, Depends, Path, Query
from typing import List, Optional

from crowdfund.api.dependencies import get_engine, get_idempotency_key
from crowdfund.schemas.proposal import (
    ContributionResponse,
    CreateProposalRequest,
    DashboardStatsResponse,
    DistributeRequest,
    DistributionResponse,
    InvestmentResponse,
    InvestRequest,
    PayoutResponse,
    ProposalResponse,
    ProposerActionRequest,
)
from crowdfund.services import projection
from crowdfund.services.engine import ProposalEngine
from crowdfund.services.identity import CallerContext, normalize_identity
from crowdfund.services.lifecycle import ProposalParams, ProposalSnapshot

router = APIRouter()


def _proposal_to_response(
    p: ProposalSnapshot,
    now: int,
    viewer: Optional[str] = None,
) -> ProposalResponse:
    """Convert a proposal snapshot to the response schema, with derived fields"""
    response = ProposalResponse(
        address=p.address,
        proposal_id=p.proposal_id,
        proposer=p.proposer,
        target=p.target,
        min_amount=p.min_amount,
        max_amount=p.max_amount,
        investor_share_percent=p.investor_share_percent,
        description=p.description,
        state=p.state.value,
        accepting_investment=p.accepting_investment,
        current_amount=p.current_amount,
        investor_count=p.investor_count,
        investors=[
            ContributionResponse(investor=investor, amount=amount)
            for investor, amount in p.contributions
        ],
        created_at=p.created_at,
        executed_at=p.executed_at,
        distributed_at=p.distributed_at,
        cooldown_seconds=p.cooldown_seconds,
        status=projection.status(p).value,
        progress_percent=projection.progress_percent(p),
        progress_bps=projection.raw_progress_bps(p),
        remaining_capacity=projection.remaining_capacity(p),
        threshold_reached=projection.threshold_reached(p),
        can_invest=projection.can_invest(p),
        can_execute=projection.can_execute(p),
        can_distribute=projection.can_distribute(p, now),
        cooldown_ends_at=p.cooldown_ends_at,
        cooldown_remaining=projection.cooldown_remaining(p, now),
    )
    if viewer is not None:
        response.is_proposer = viewer == p.proposer
        response.viewer_investment = p.contribution_of(viewer)
        response.can_execute = projection.can_execute(p, caller=viewer)
    return response


def _viewer(viewer: Optional[str]) -> Optional[str]:
    return normalize_identity(viewer, "viewer") if viewer else None


@router.get("", response_model=List[ProposalResponse])
async def list_proposals(
    status: Optional[projection.ProposalBucket] = Query(default=None),
    viewer: Optional[str] = Query(default=None),
    engine: ProposalEngine = Depends(get_engine),
):
    """List proposals in creation order, optionally filtered by dashboard bucket"""
    viewer = _viewer(viewer)
    now = engine.now()
    return [_proposal_to_response(p, now, viewer) for p in engine.list_proposals(status)]


@router.get("/stats", response_model=DashboardStatsResponse)
async def get_stats(engine: ProposalEngine = Depends(get_engine)):
    """Aggregate dashboard statistics"""
    stats = engine.stats()
    return DashboardStatsResponse(
        total_proposals=stats.total_proposals,
        active_proposals=stats.active_proposals,
        inactive_proposals=stats.inactive_proposals,
        executed_proposals=stats.executed_proposals,
        completed_proposals=stats.completed_proposals,
        total_funding=stats.total_funding,
    )


@router.get("/{ref}", response_model=ProposalResponse)
async def get_proposal(
    ref: str = Path(..., description="Proposal id or 0x address"),
    viewer: Optional[str] = Query(default=None),
    engine: ProposalEngine = Depends(get_engine),
):
    """Get a proposal by id or address"""
    viewer = _viewer(viewer)
    return _proposal_to_response(engine.get_proposal(ref), engine.now(), viewer)


@router.get("/{ref}/investments/{investor}", response_model=InvestmentResponse)
async def get_investment(
    ref: str = Path(...),
    investor: str = Path(...),
    engine: ProposalEngine = Depends(get_engine),
):
    """Amount an investor has contributed to a proposal (0 if none)"""
    snapshot, amount = engine.get_investment_of(ref, investor)
    return InvestmentResponse(
        proposal_address=snapshot.address,
        proposal_id=snapshot.proposal_id,
        investor=investor.lower(),
        amount=amount,
        current_amount=snapshot.current_amount,
        investor_share_percent=snapshot.investor_share_percent,
    )


@router.get("/{ref}/distribution", response_model=DistributionResponse)
async def get_distribution(ref: str = Path(...), engine: ProposalEngine = Depends(get_engine)):
    """Profit distribution plan and payment progress"""
    p = engine.get_proposal(ref)
    d = p.distribution
    if d is None:
        return DistributionResponse(
            proposal_address=p.address,
            proposal_id=p.proposal_id,
            status="not_started",
        )
    return DistributionResponse(
        proposal_address=p.address,
        proposal_id=p.proposal_id,
        status="completed" if d.complete else "in_progress",
        profit_amount=d.profit_amount,
        investor_pool=d.investor_pool,
        proposer_amount=d.proposer_amount,
        dust=d.dust,
        paid_amount=d.paid_amount,
        started_at=d.started_at,
        payouts=[
            PayoutResponse(
                recipient=payout.recipient,
                role=payout.role.value,
                amount=payout.amount,
                paid=payout.paid,
                reference=payout.reference,
            )
            for payout in d.payouts
        ],
    )


@router.post("", response_model=ProposalResponse)
async def create_proposal(
    request: CreateProposalRequest,
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    engine: ProposalEngine = Depends(get_engine),
):
    """Create a new proposal"""
    ctx = CallerContext.for_caller(request.proposer, idempotency_key)
    params = ProposalParams(
        proposal_id=request.proposal_id,
        target=request.target,
        min_amount=request.min_amount,
        max_amount=request.max_amount,
        investor_share_percent=request.investor_share_percent,
        description=request.description,
    )
    snapshot = await engine.create_proposal(ctx, params)
    return _proposal_to_response(snapshot, engine.now(), ctx.identity)


@router.post("/{ref}/invest", response_model=ProposalResponse)
async def invest(
    request: InvestRequest,
    ref: str = Path(...),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    engine: ProposalEngine = Depends(get_engine),
):
    """Invest in a proposal"""
    ctx = CallerContext.for_caller(request.investor, idempotency_key)
    snapshot = await engine.invest(ctx, ref, request.amount)
    return _proposal_to_response(snapshot, engine.now(), ctx.identity)


@router.post("/{ref}/execute", response_model=ProposalResponse)
async def execute_proposal(
    request: ProposerActionRequest,
    ref: str = Path(...),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    engine: ProposalEngine = Depends(get_engine),
):
    """Release the raised funds to the target (proposer only)"""
    ctx = CallerContext.for_caller(request.caller, idempotency_key)
    snapshot = await engine.execute(ctx, ref)
    return _proposal_to_response(snapshot, engine.now(), ctx.identity)


@router.post("/{ref}/distribute", response_model=ProposalResponse)
async def distribute_profit(
    request: DistributeRequest,
    ref: str = Path(...),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    engine: ProposalEngine = Depends(get_engine),
):
    """Distribute profit to investors and proposer after the cooldown (proposer only)"""
    ctx = CallerContext.for_caller(request.caller, idempotency_key)
    snapshot = await engine.distribute(ctx, ref, request.profit_amount)
    return _proposal_to_response(snapshot, engine.now(), ctx.identity)


@router.post("/{ref}/close", response_model=ProposalResponse)
async def close_funding(
    request: ProposerActionRequest,
    ref: str = Path(...),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    engine: ProposalEngine = Depends(get_engine),
):
    """Stop accepting investment (proposer only)"""
    ctx = CallerContext.for_caller(request.caller, idempotency_key)
    snapshot = await engine.close_funding(ctx, ref)
    return _proposal_to_response(snapshot, engine.now(), ctx.identity)


@router.post("/{ref}/reopen", response_model=ProposalResponse)
async def reopen_funding(
    request: ProposerActionRequest,
    ref: str = Path(...),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    engine: ProposalEngine = Depends(get_engine),
):
    """Accept investment again, when enabled by configuration (proposer only)"""
    ctx = CallerContext.for_caller(request.caller, idempotency_key)
    snapshot = await engine.reopen_funding(ctx, ref)
    return _proposal_to_response(snapshot, engine.now(), ctx.identity)


@router.post("/{ref}/execute-and-distribute", response_model=ProposalResponse)
async def execute_and_distribute(
    request: DistributeRequest,
    ref: str = Path(...),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    engine: ProposalEngine = Depends(get_engine),
):
    """Execute and distribute profit in one call; requires a zero cooldown (proposer only)"""
    ctx = CallerContext.for_caller(request.caller, idempotency_key)
    snapshot = await engine.execute_and_distribute(ctx, ref, request.profit_amount)
    return _proposal_to_response(snapshot, engine.now(), ctx.identity)
