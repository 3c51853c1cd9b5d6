"""
Proposal Engine

Async facade over the registry used by the API. Commands on one proposal are
serialised by a per-proposal lock; creation is serialised by a registry lock.

Every command follows the same order:

1. claim the idempotency key
2. run the lifecycle guard (no mutation)
3. perform the external transfer, if any
4. journal the event in a short transaction
5. apply the in-memory mutation, which cannot fail once the guard passed

No database transaction is open while a transfer is awaited, so a slow ledger
on one proposal never holds up commands on another. Transfer references are
deterministic, so a retry after a failed journal write is deduplicated by the
ledger. Step 5 runs without awaiting, so readers never see a half-applied
transition. A failure in steps 2-4 leaves the proposal untouched.
"""
import asyncio
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import structlog

from crowdfund.models.proposal_event import EventType, ProposalEvent
from crowdfund.services import amounts, projection
from crowdfund.services.errors import CooldownNotElapsed, IdempotencyConflict, TransferFailed
from crowdfund.services.identity import CallerContext, normalize_identity
from crowdfund.services.journal import (
    ProposalJournal,
    creation_event,
    distribution_event,
    execute_reference,
    execution_event,
    funding_event,
    investment_event,
    payment_event,
    payout_reference,
    request_fingerprint,
)
from crowdfund.services.lifecycle import Proposal, ProposalParams, ProposalSnapshot
from crowdfund.services.registry import ProposalRegistry
from crowdfund.services.transfers import TransferGateway, TransferReceipt

logger = structlog.get_logger()

Clock = Callable[[], int]


def system_clock() -> int:
    return int(time.time())


class ProposalEngine:
    """Command and read API over a ProposalRegistry"""

    def __init__(
        self,
        registry: ProposalRegistry,
        gateway: TransferGateway,
        journal: Optional[ProposalJournal] = None,
        clock: Clock = system_clock,
        allow_funding_reopen: bool = False,
    ):
        self.registry = registry
        self.gateway = gateway
        self.journal = journal
        self.clock = clock
        self.allow_funding_reopen = allow_funding_reopen
        self._create_lock = asyncio.Lock()
        self._locks: Dict[str, asyncio.Lock] = {}
        # key -> (fingerprint, address); address is None while the command runs
        self._idempotency: Dict[str, Tuple[str, Optional[str]]] = {}

    async def restore(self) -> int:
        """Rebuild state from the journal; returns the number of proposals"""
        if self.journal is None:
            return 0
        for record in await self.journal.replay(self.registry):
            self._idempotency[record.key] = (record.fingerprint, record.proposal_address)
        return len(self.registry)

    # Reads

    def now(self) -> int:
        return self.clock()

    def list_proposals(
        self, bucket: Optional[projection.ProposalBucket] = None
    ) -> List[ProposalSnapshot]:
        return projection.filter_bucket(self.registry.list(), bucket)

    def get_proposal(self, ref: str) -> ProposalSnapshot:
        return self.registry.resolve(ref).snapshot()

    def get_investment_of(self, ref: str, investor: str) -> Tuple[ProposalSnapshot, int]:
        """Snapshot of the proposal and ``investor``'s contribution in it"""
        investor = normalize_identity(investor, "investor")
        snapshot = self.get_proposal(ref)
        return snapshot, snapshot.contribution_of(investor)

    def stats(self) -> projection.DashboardStats:
        return projection.dashboard_stats(self.registry.list())

    # Commands

    async def create_proposal(self, ctx: CallerContext, params: ProposalParams) -> ProposalSnapshot:
        fingerprint = request_fingerprint("create", proposer=ctx.identity, params=params)
        async with self._create_lock:
            with self._claim(ctx, fingerprint) as replayed:
                if replayed is not None:
                    return replayed

                proposal = self.registry.prepare(params, ctx.identity, self.clock())
                await self._record(creation_event(proposal, ctx, fingerprint))
                self.registry.register(proposal)
                self._remember(ctx, fingerprint, proposal)

        logger.info(
            "Created proposal",
            proposal=proposal.address,
            proposal_id=proposal.proposal_id,
            proposer=ctx.identity,
            min_amount=proposal.params.min_amount,
            max_amount=proposal.params.max_amount,
        )
        return proposal.snapshot()

    async def invest(self, ctx: CallerContext, ref: str, amount: int) -> ProposalSnapshot:
        proposal = self.registry.resolve(ref)
        fingerprint = request_fingerprint(
            "invest", proposal=proposal.address, investor=ctx.identity, amount=amount
        )
        async with self._lock_for(proposal):
            with self._claim(ctx, fingerprint) as replayed:
                if replayed is not None:
                    return replayed

                proposal.ensure_can_invest(amount)
                now = self.clock()
                await self._record(investment_event(proposal, ctx, amount, now, fingerprint))
                total = proposal.invest(ctx.identity, amount)
                self._remember(ctx, fingerprint, proposal)

        logger.info(
            "Recorded investment",
            proposal=proposal.address,
            investor=ctx.identity,
            amount=amount,
            investor_total=total,
            current_amount=proposal.current_amount,
        )
        return proposal.snapshot()

    async def close_funding(self, ctx: CallerContext, ref: str) -> ProposalSnapshot:
        proposal = self.registry.resolve(ref)
        fingerprint = request_fingerprint("close_funding", proposal=proposal.address, caller=ctx.identity)
        async with self._lock_for(proposal):
            with self._claim(ctx, fingerprint) as replayed:
                if replayed is not None:
                    return replayed

                proposal.ensure_can_close_funding(ctx.identity)
                await self._record(
                    funding_event(proposal, ctx, EventType.FUNDING_CLOSE, self.clock(), fingerprint)
                )
                proposal.close_funding(ctx.identity)
                self._remember(ctx, fingerprint, proposal)

        logger.info("Closed funding", proposal=proposal.address)
        return proposal.snapshot()

    async def reopen_funding(self, ctx: CallerContext, ref: str) -> ProposalSnapshot:
        proposal = self.registry.resolve(ref)
        fingerprint = request_fingerprint("reopen_funding", proposal=proposal.address, caller=ctx.identity)
        async with self._lock_for(proposal):
            with self._claim(ctx, fingerprint) as replayed:
                if replayed is not None:
                    return replayed

                proposal.ensure_can_reopen_funding(ctx.identity, self.allow_funding_reopen)
                await self._record(
                    funding_event(proposal, ctx, EventType.FUNDING_REOPEN, self.clock(), fingerprint)
                )
                proposal.reopen_funding(ctx.identity, self.allow_funding_reopen)
                self._remember(ctx, fingerprint, proposal)

        logger.info("Reopened funding", proposal=proposal.address)
        return proposal.snapshot()

    async def execute(self, ctx: CallerContext, ref: str) -> ProposalSnapshot:
        proposal = self.registry.resolve(ref)
        fingerprint = request_fingerprint("execute", proposal=proposal.address, caller=ctx.identity)
        async with self._lock_for(proposal):
            with self._claim(ctx, fingerprint) as replayed:
                if replayed is not None:
                    return replayed

                proposal.ensure_can_execute(ctx.identity)
                await self._execute(ctx, proposal, fingerprint)
                self._remember(ctx, fingerprint, proposal)

        return proposal.snapshot()

    async def distribute(self, ctx: CallerContext, ref: str, profit_amount: int) -> ProposalSnapshot:
        """
        Pay out ``profit_amount``: investors first, in first-contribution order,
        then the proposer.

        Each confirmed payment is journaled on its own, so a distribution
        interrupted by TransferFailed resumes with the unpaid recipients when
        called again with the same profit amount.
        """
        proposal = self.registry.resolve(ref)
        fingerprint = request_fingerprint(
            "distribute", proposal=proposal.address, caller=ctx.identity, profit_amount=profit_amount
        )
        async with self._lock_for(proposal):
            with self._claim(ctx, fingerprint) as replayed:
                if replayed is not None:
                    return replayed

                await self._distribute(ctx, proposal, profit_amount, fingerprint)
                self._remember(ctx, fingerprint, proposal)

        return proposal.snapshot()

    async def execute_and_distribute(
        self, ctx: CallerContext, ref: str, profit_amount: int
    ) -> ProposalSnapshot:
        """
        Execute and distribute ``profit_amount`` in one command.

        Only possible when the cooldown is zero. If a payout fails after the
        execution went through, the proposal stays executed and the
        distribution is resumed with ``distribute``.
        """
        proposal = self.registry.resolve(ref)
        fingerprint = request_fingerprint(
            "execute_and_distribute",
            proposal=proposal.address,
            caller=ctx.identity,
            profit_amount=profit_amount,
        )
        async with self._lock_for(proposal):
            with self._claim(ctx, fingerprint) as replayed:
                if replayed is not None:
                    return replayed

                proposal.ensure_can_execute(ctx.identity)
                amounts.check_amount(profit_amount, "profit_amount")
                if proposal.cooldown_seconds > 0:
                    raise CooldownNotElapsed(
                        f"Proposal {proposal.proposal_id} has a cooldown of "
                        f"{proposal.cooldown_seconds} seconds after execution",
                        remaining_seconds=proposal.cooldown_seconds,
                    )
                await self._execute(ctx, proposal, None)
                await self._distribute(ctx, proposal, profit_amount, fingerprint)
                self._remember(ctx, fingerprint, proposal)

        return proposal.snapshot()

    # Helpers

    async def _execute(
        self, ctx: CallerContext, proposal: Proposal, fingerprint: Optional[str]
    ) -> None:
        now = self.clock()
        amount = proposal.current_amount
        receipt = await self._transfer(proposal.target, amount, execute_reference(proposal))
        event = execution_event(proposal, ctx, now, fingerprint)
        event.transaction_id = receipt.transaction_id
        await self._record(event)
        proposal.execute(ctx.identity, now)

        logger.info(
            "Executed proposal",
            proposal=proposal.address,
            target=proposal.target,
            amount=amount,
            transaction_id=receipt.transaction_id,
        )

    async def _distribute(
        self, ctx: CallerContext, proposal: Proposal, profit_amount: int, fingerprint: str
    ) -> None:
        now = self.clock()
        plan = proposal.prepare_distribution(ctx.identity, profit_amount, now)
        for payout in plan.pending:
            reference = payout_reference(proposal, payout)
            event = payment_event(proposal, ctx, payout, profit_amount, now)
            if payout.amount > 0:
                try:
                    receipt = await self._transfer(payout.recipient, payout.amount, reference)
                except TransferFailed:
                    paid = proposal.distribution.paid_amount if proposal.distribution else 0
                    logger.error(
                        "Distribution interrupted",
                        proposal=proposal.address,
                        recipient=payout.recipient,
                        paid_amount=paid,
                    )
                    raise
                event.transaction_id = receipt.transaction_id
            await self._record(event)
            proposal.record_payout(plan, payout.recipient, payout.role, reference)

        await self._record(distribution_event(proposal, ctx, profit_amount, now, fingerprint))
        proposal.complete_distribution(now)

        distribution = proposal.distribution
        logger.info(
            "Distributed profit",
            proposal=proposal.address,
            profit_amount=profit_amount,
            investor_pool=distribution.investor_pool,
            proposer_amount=distribution.proposer_amount,
            recipients=len(distribution.payouts),
        )

    def _lock_for(self, proposal: Proposal) -> asyncio.Lock:
        return self._locks.setdefault(proposal.address, asyncio.Lock())

    async def _record(self, *events: ProposalEvent) -> None:
        if self.journal is not None:
            await self.journal.append(*events)

    async def _transfer(self, recipient: str, amount: int, reference: str) -> TransferReceipt:
        try:
            return await self.gateway.transfer(recipient, amount, reference)
        except TransferFailed:
            raise
        except Exception as e:
            logger.error("Transfer gateway error", reference=reference, error=str(e))
            raise TransferFailed(f"Transfer {reference} failed: {e}", reference=reference) from e

    @contextmanager
    def _claim(self, ctx: CallerContext, fingerprint: str) -> Iterator[Optional[ProposalSnapshot]]:
        """
        Reserve ``ctx``'s idempotency key for the duration of a command.

        Yields the snapshot to return when the key already completed a command,
        None otherwise. The reservation is released if the command fails.
        """
        key = ctx.idempotency_key
        if key is None:
            yield None
            return

        seen = self._idempotency.get(key)
        if seen is not None:
            seen_fingerprint, address = seen
            if seen_fingerprint != fingerprint:
                raise IdempotencyConflict(f"Idempotency key {key} was used for a different request")
            if address is None:
                raise IdempotencyConflict(f"A request with idempotency key {key} is in progress")
            logger.info("Replayed idempotent command", key=key, proposal=address)
            yield self.registry.get(address).snapshot()
            return

        self._idempotency[key] = (fingerprint, None)
        try:
            yield None
        except BaseException:
            self._idempotency.pop(key, None)
            raise
        if self._idempotency.get(key) == (fingerprint, None):
            self._idempotency.pop(key, None)

    def _remember(self, ctx: CallerContext, fingerprint: str, proposal: Proposal) -> None:
        if ctx.idempotency_key is not None:
            self._idempotency[ctx.idempotency_key] = (fingerprint, proposal.address)
