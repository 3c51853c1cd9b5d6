"""
Proposal Lifecycle

A proposal moves through three states:

    ACTIVE --execute--> EXECUTED --distribute--> DISTRIBUTED

While ACTIVE it accepts investments up to ``max_amount`` as long as its funding
window is open (``accepting_investment``). The proposer may execute it once
``min_amount`` is reached, which pays the funds to the target and closes the
funding window. After ``cooldown_seconds`` the proposer distributes profit:
investors share ``investor_share_percent`` of it pro-rata to their
contribution, the proposer receives the rest including rounding dust.
DISTRIBUTED is terminal.

Guards (``ensure_*``) never mutate. Mutating methods run their guard first and
then change state without any further checks that could fail, so a failed call
leaves the proposal untouched.
"""
import enum
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from crowdfund.services import amounts
from crowdfund.services.errors import (
    CooldownNotElapsed,
    FundingCapExceeded,
    InvalidState,
    ProposalNotAcceptingInvestment,
    ThresholdNotReached,
    Unauthorized,
    ValidationError,
)
from crowdfund.services.identity import normalize_identity
from crowdfund.services.investment_ledger import InvestmentLedger

# proposal ids are stored as signed 64-bit integers
MAX_PROPOSAL_ID = 2**63 - 1
MIN_INVESTOR_SHARE = 1
MAX_INVESTOR_SHARE = 99
DESCRIPTION_MIN_LENGTH = 10
DESCRIPTION_MAX_LENGTH = 1000


class ProposalState(str, enum.Enum):
    ACTIVE = "active"
    EXECUTED = "executed"
    DISTRIBUTED = "distributed"


class PayoutRole(str, enum.Enum):
    INVESTOR = "investor"
    PROPOSER = "proposer"


def _require_int(value: object, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    return value


@dataclass(frozen=True)
class ProposalParams:
    """Creation parameters supplied by the proposer"""
    proposal_id: int
    target: str
    min_amount: int
    max_amount: int
    investor_share_percent: int
    description: Optional[str] = None

    def validated(self) -> "ProposalParams":
        """Return a normalised copy, raising ValidationError on bad input"""
        proposal_id = _require_int(self.proposal_id, "proposal_id")
        if not 0 < proposal_id <= MAX_PROPOSAL_ID:
            raise ValidationError(f"proposal_id must be between 1 and {MAX_PROPOSAL_ID}")

        target = normalize_identity(self.target, "target")

        min_amount = _require_int(self.min_amount, "min_amount")
        max_amount = _require_int(self.max_amount, "max_amount")
        if min_amount <= 0:
            raise ValidationError("min_amount must be greater than zero")
        if max_amount <= min_amount:
            raise ValidationError("max_amount must be greater than min_amount")
        if max_amount > amounts.MAX_AMOUNT:
            raise ValidationError("max_amount exceeds the maximum representable amount")

        share = _require_int(self.investor_share_percent, "investor_share_percent")
        if not MIN_INVESTOR_SHARE <= share <= MAX_INVESTOR_SHARE:
            raise ValidationError(
                f"investor_share_percent must be between {MIN_INVESTOR_SHARE} and {MAX_INVESTOR_SHARE}"
            )

        description = self.description
        if description is not None:
            description = description.strip()
            if not DESCRIPTION_MIN_LENGTH <= len(description) <= DESCRIPTION_MAX_LENGTH:
                raise ValidationError(
                    f"description must be {DESCRIPTION_MIN_LENGTH}-{DESCRIPTION_MAX_LENGTH} characters"
                )

        return ProposalParams(
            proposal_id=proposal_id,
            target=target,
            min_amount=min_amount,
            max_amount=max_amount,
            investor_share_percent=share,
            description=description,
        )


@dataclass(frozen=True)
class Payout:
    """One planned profit payment"""
    recipient: str
    role: PayoutRole
    amount: int
    paid: bool = False
    reference: Optional[str] = None


@dataclass(frozen=True)
class Distribution:
    """
    Profit distribution plan and its payment progress.

    The plan is fixed when distribution starts. Payments are recorded one by
    one so an interrupted distribution can resume without paying anyone twice.
    """
    profit_amount: int
    investor_pool: int
    payouts: Tuple[Payout, ...]
    started_at: int

    @property
    def pending(self) -> Tuple[Payout, ...]:
        return tuple(p for p in self.payouts if not p.paid)

    @property
    def complete(self) -> bool:
        return not self.pending

    @property
    def paid_amount(self) -> int:
        return sum(p.amount for p in self.payouts if p.paid)

    @property
    def proposer_amount(self) -> int:
        return sum(p.amount for p in self.payouts if p.role == PayoutRole.PROPOSER)

    @property
    def dust(self) -> int:
        """Investor pool rounding remainder, paid to the proposer"""
        investor_total = sum(p.amount for p in self.payouts if p.role == PayoutRole.INVESTOR)
        return self.investor_pool - investor_total

    def mark_paid(self, recipient: str, role: PayoutRole, reference: Optional[str]) -> "Distribution":
        payouts = []
        found = False
        for payout in self.payouts:
            if payout.recipient == recipient and payout.role == role:
                if payout.paid:
                    raise InvalidState(f"{role.value} payout to {recipient} already recorded")
                payout = replace(payout, paid=True, reference=reference)
                found = True
            payouts.append(payout)
        if not found:
            raise InvalidState(f"No {role.value} payout planned for {recipient}")
        return replace(self, payouts=tuple(payouts))


@dataclass(frozen=True)
class ProposalSnapshot:
    """Immutable, internally consistent view of a proposal"""
    address: str
    proposal_id: int
    proposer: str
    target: str
    min_amount: int
    max_amount: int
    investor_share_percent: int
    description: Optional[str]
    state: ProposalState
    accepting_investment: bool
    current_amount: int
    contributions: Tuple[Tuple[str, int], ...]
    cooldown_seconds: int
    created_at: int
    executed_at: Optional[int] = None
    distributed_at: Optional[int] = None
    distribution: Optional[Distribution] = field(default=None)

    @property
    def investors(self) -> Tuple[str, ...]:
        return tuple(investor for investor, _ in self.contributions)

    @property
    def investor_count(self) -> int:
        return len(self.contributions)

    def contribution_of(self, investor: str) -> int:
        for identity, amount in self.contributions:
            if identity == investor:
                return amount
        return 0

    @property
    def cooldown_ends_at(self) -> Optional[int]:
        if self.executed_at is None:
            return None
        return self.executed_at + self.cooldown_seconds


class Proposal:
    """Mutable proposal aggregate; owned by a ProposalRegistry"""

    def __init__(
        self,
        address: str,
        params: ProposalParams,
        proposer: str,
        cooldown_seconds: int,
        created_at: int,
    ):
        self.address = address
        self.params = params
        self.proposer = proposer
        self.cooldown_seconds = cooldown_seconds
        self.created_at = created_at
        self.state = ProposalState.ACTIVE
        self.accepting_investment = True
        self.ledger = InvestmentLedger()
        self.executed_at: Optional[int] = None
        self.distributed_at: Optional[int] = None
        self.distribution: Optional[Distribution] = None

    @property
    def proposal_id(self) -> int:
        return self.params.proposal_id

    @property
    def target(self) -> str:
        return self.params.target

    @property
    def current_amount(self) -> int:
        return self.ledger.aggregate

    @property
    def threshold_reached(self) -> bool:
        return amounts.threshold_reached(self.current_amount, self.params.min_amount)

    def cooldown_remaining(self, now: int) -> int:
        if self.executed_at is None:
            return self.cooldown_seconds
        return max(0, self.executed_at + self.cooldown_seconds - now)

    def _require_proposer(self, caller: str, action: str) -> None:
        if caller != self.proposer:
            raise Unauthorized(f"Only the proposer can {action} proposal {self.proposal_id}")

    # Investment

    def ensure_can_invest(self, amount: int) -> None:
        amounts.check_positive(amount)
        if self.state != ProposalState.ACTIVE or not self.accepting_investment:
            raise ProposalNotAcceptingInvestment(
                f"Proposal {self.proposal_id} is not accepting investment"
            )
        new_total = amounts.add(self.current_amount, amount)
        if not amounts.within_cap(new_total, self.params.max_amount):
            raise FundingCapExceeded(
                f"Investment of {amount} exceeds the funding cap of proposal {self.proposal_id}",
                remaining_capacity=self.params.max_amount - self.current_amount,
            )

    def invest(self, investor: str, amount: int) -> int:
        """Record an investment; returns the investor's total contribution"""
        self.ensure_can_invest(amount)
        return self.ledger.record_contribution(investor, amount)

    def ensure_can_close_funding(self, caller: str) -> None:
        self._require_proposer(caller, "close funding of")
        if self.state != ProposalState.ACTIVE:
            raise InvalidState(f"Proposal {self.proposal_id} is {self.state.value}")
        if not self.accepting_investment:
            raise InvalidState(f"Funding of proposal {self.proposal_id} is already closed")

    def close_funding(self, caller: str) -> None:
        self.ensure_can_close_funding(caller)
        self.accepting_investment = False

    def ensure_can_reopen_funding(self, caller: str, allowed: bool) -> None:
        self._require_proposer(caller, "reopen funding of")
        if not allowed:
            raise InvalidState("Reopening funding is disabled")
        if self.state != ProposalState.ACTIVE:
            raise InvalidState(f"Proposal {self.proposal_id} is {self.state.value}")
        if self.accepting_investment:
            raise InvalidState(f"Funding of proposal {self.proposal_id} is already open")

    def reopen_funding(self, caller: str, allowed: bool) -> None:
        self.ensure_can_reopen_funding(caller, allowed)
        self.accepting_investment = True

    # Execution

    def ensure_can_execute(self, caller: str) -> None:
        self._require_proposer(caller, "execute")
        if self.state != ProposalState.ACTIVE:
            raise InvalidState(f"Proposal {self.proposal_id} is already {self.state.value}")
        if not self.threshold_reached:
            raise ThresholdNotReached(
                f"Proposal {self.proposal_id} has {self.current_amount} of the "
                f"{self.params.min_amount} minimum",
                missing_amount=self.params.min_amount - self.current_amount,
            )

    def execute(self, caller: str, now: int) -> int:
        """Mark the proposal executed; returns the amount released to the target"""
        self.ensure_can_execute(caller)
        self.state = ProposalState.EXECUTED
        self.executed_at = now
        self.accepting_investment = False
        return self.current_amount

    # Distribution

    def ensure_can_distribute(self, caller: str, profit_amount: int, now: int) -> None:
        self._require_proposer(caller, "distribute profit of")
        if self.state == ProposalState.DISTRIBUTED:
            raise InvalidState(f"Profit of proposal {self.proposal_id} was already distributed")
        if self.state != ProposalState.EXECUTED:
            raise InvalidState(f"Proposal {self.proposal_id} has not been executed")
        amounts.check_amount(profit_amount, "profit_amount")
        remaining = self.cooldown_remaining(now)
        if remaining > 0:
            raise CooldownNotElapsed(
                f"Cooldown of proposal {self.proposal_id} ends in {remaining} seconds",
                remaining_seconds=remaining,
            )
        if self.distribution is not None and self.distribution.profit_amount != profit_amount:
            raise InvalidState(
                f"Distribution of {self.distribution.profit_amount} is already in progress"
            )

    def plan_distribution(self, profit_amount: int, now: int) -> Distribution:
        allocation = self.ledger.allocate(profit_amount, self.params.investor_share_percent)
        payouts = [
            Payout(recipient=investor, role=PayoutRole.INVESTOR, amount=share)
            for investor, share in allocation.shares
        ]
        payouts.append(
            Payout(
                recipient=self.proposer,
                role=PayoutRole.PROPOSER,
                amount=amounts.sub(profit_amount, allocation.allocated),
            )
        )
        return Distribution(
            profit_amount=profit_amount,
            investor_pool=allocation.investor_pool,
            payouts=tuple(payouts),
            started_at=now,
        )

    def prepare_distribution(self, caller: str, profit_amount: int, now: int) -> Distribution:
        """
        Plan to carry out for ``profit_amount``: the one in progress, if any,
        otherwise a new one. The plan is only stored once its first payment
        is recorded.
        """
        self.ensure_can_distribute(caller, profit_amount, now)
        if self.distribution is not None:
            return self.distribution
        return self.plan_distribution(profit_amount, now)

    def record_payout(
        self,
        plan: Distribution,
        recipient: str,
        role: PayoutRole,
        reference: Optional[str] = None,
    ) -> None:
        if self.state != ProposalState.EXECUTED:
            raise InvalidState(f"Proposal {self.proposal_id} is {self.state.value}")
        current = self.distribution or plan
        if current.profit_amount != plan.profit_amount:
            raise InvalidState(
                f"Distribution of {current.profit_amount} is already in progress"
            )
        self.distribution = current.mark_paid(recipient, role, reference)

    def complete_distribution(self, now: int) -> None:
        if self.distribution is None or not self.distribution.complete:
            raise InvalidState(f"Distribution of proposal {self.proposal_id} has unpaid recipients")
        self.state = ProposalState.DISTRIBUTED
        self.distributed_at = now

    def distribute(self, caller: str, profit_amount: int, now: int) -> Distribution:
        """Distribute in one step; used when payments need no external confirmation"""
        plan = self.prepare_distribution(caller, profit_amount, now)
        for payout in plan.pending:
            self.record_payout(plan, payout.recipient, payout.role)
        self.complete_distribution(now)
        return self.distribution

    def snapshot(self) -> ProposalSnapshot:
        return ProposalSnapshot(
            address=self.address,
            proposal_id=self.params.proposal_id,
            proposer=self.proposer,
            target=self.params.target,
            min_amount=self.params.min_amount,
            max_amount=self.params.max_amount,
            investor_share_percent=self.params.investor_share_percent,
            description=self.params.description,
            state=self.state,
            accepting_investment=self.accepting_investment,
            current_amount=self.current_amount,
            contributions=tuple(self.ledger.contributions()),
            cooldown_seconds=self.cooldown_seconds,
            created_at=self.created_at,
            executed_at=self.executed_at,
            distributed_at=self.distributed_at,
            distribution=self.distribution,
        )

    def __repr__(self):
        return f"<Proposal {self.proposal_id} {self.address} ({self.state.value})>"
