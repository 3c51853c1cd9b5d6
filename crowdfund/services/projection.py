"""
Dashboard projections

Pure functions over ProposalSnapshot. Every derived flag comes from one
snapshot, so the flags of a proposal can never disagree with each other.
"""
import enum
from dataclasses import dataclass
from typing import Iterable, List, Optional

from crowdfund.services import amounts
from crowdfund.services.lifecycle import ProposalSnapshot, ProposalState


class ProposalStatus(str, enum.Enum):
    """Display status, most advanced first"""
    DISTRIBUTED = "distributed"
    EXECUTED = "executed"
    THRESHOLD_REACHED = "threshold_reached"
    ACTIVE = "active"
    INACTIVE = "inactive"


class ProposalBucket(str, enum.Enum):
    """Dashboard tabs"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXECUTED = "executed"
    COMPLETED = "completed"


def raw_progress_bps(p: ProposalSnapshot) -> int:
    """Funding progress in basis points, not clamped"""
    if p.max_amount == 0:
        return 0
    return p.current_amount * 10_000 // p.max_amount


def progress_percent(p: ProposalSnapshot) -> int:
    """Funding progress for display, clamped to [0, 100]"""
    return min(100, raw_progress_bps(p) // 100)


def threshold_reached(p: ProposalSnapshot) -> bool:
    return amounts.threshold_reached(p.current_amount, p.min_amount)


def remaining_capacity(p: ProposalSnapshot) -> int:
    return max(0, p.max_amount - p.current_amount)


def status(p: ProposalSnapshot) -> ProposalStatus:
    if p.state == ProposalState.DISTRIBUTED:
        return ProposalStatus.DISTRIBUTED
    if p.state == ProposalState.EXECUTED:
        return ProposalStatus.EXECUTED
    if threshold_reached(p):
        return ProposalStatus.THRESHOLD_REACHED
    if p.accepting_investment:
        return ProposalStatus.ACTIVE
    return ProposalStatus.INACTIVE


def bucket(p: ProposalSnapshot) -> ProposalBucket:
    if p.state == ProposalState.DISTRIBUTED:
        return ProposalBucket.COMPLETED
    if p.state == ProposalState.EXECUTED:
        return ProposalBucket.EXECUTED
    if p.accepting_investment:
        return ProposalBucket.ACTIVE
    return ProposalBucket.INACTIVE


def can_invest(p: ProposalSnapshot) -> bool:
    return (
        p.state == ProposalState.ACTIVE
        and p.accepting_investment
        and p.current_amount < p.max_amount
    )


def can_execute(p: ProposalSnapshot, caller: Optional[str] = None) -> bool:
    """Execution is possible; when ``caller`` is given, also by that caller"""
    if caller is not None and caller != p.proposer:
        return False
    return p.state == ProposalState.ACTIVE and threshold_reached(p)


def cooldown_remaining(p: ProposalSnapshot, now: int) -> Optional[int]:
    """Seconds until distribution opens; None before execution"""
    if p.cooldown_ends_at is None:
        return None
    return max(0, p.cooldown_ends_at - now)


def can_distribute(p: ProposalSnapshot, now: int) -> bool:
    return p.state == ProposalState.EXECUTED and now >= p.cooldown_ends_at


@dataclass(frozen=True)
class DashboardStats:
    total_proposals: int
    active_proposals: int
    inactive_proposals: int
    executed_proposals: int
    completed_proposals: int
    total_funding: int


def dashboard_stats(proposals: Iterable[ProposalSnapshot]) -> DashboardStats:
    counts = {b: 0 for b in ProposalBucket}
    total = 0
    funding = 0
    for p in proposals:
        counts[bucket(p)] += 1
        total += 1
        funding += p.current_amount
    return DashboardStats(
        total_proposals=total,
        active_proposals=counts[ProposalBucket.ACTIVE],
        inactive_proposals=counts[ProposalBucket.INACTIVE],
        executed_proposals=counts[ProposalBucket.EXECUTED],
        completed_proposals=counts[ProposalBucket.COMPLETED],
        total_funding=funding,
    )


def filter_bucket(
    proposals: Iterable[ProposalSnapshot],
    wanted: Optional[ProposalBucket],
) -> List[ProposalSnapshot]:
    if wanted is None:
        return list(proposals)
    return [p for p in proposals if bucket(p) == wanted]
