"""Event journal: records committed proposal transitions and rebuilds the registry from them."""
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from crowdfund.models.proposal_event import EventType, ProposalEvent
from crowdfund.services.errors import IdempotencyConflict, JournalError
from crowdfund.services.identity import CallerContext
from crowdfund.services.lifecycle import Payout, PayoutRole, Proposal, ProposalParams
from crowdfund.services.registry import ProposalRegistry

logger = structlog.get_logger()


def request_fingerprint(operation: str, **payload: Any) -> str:
    """Stable hash of a command, used to detect idempotency key reuse"""
    body = json.dumps({"operation": operation, **payload}, sort_keys=True, default=str)
    return hashlib.sha256(body.encode()).hexdigest()


def execute_reference(proposal: Proposal) -> str:
    return f"{proposal.address}:execute:{proposal.target}"


def payout_reference(proposal: Proposal, payout: Payout) -> str:
    return f"{proposal.address}:payout:{payout.role.value}:{payout.recipient}"


def _event(
    proposal: Proposal,
    event_type: EventType,
    actor: str,
    occurred_at: int,
    ctx: Optional[CallerContext] = None,
    fingerprint: Optional[str] = None,
    **fields: Any,
) -> ProposalEvent:
    return ProposalEvent(
        proposal_address=proposal.address,
        proposal_id=proposal.proposal_id,
        event_type=event_type,
        actor=actor,
        occurred_at=occurred_at,
        idempotency_key=ctx.idempotency_key if ctx and fingerprint else None,
        request_fingerprint=fingerprint if ctx and ctx.idempotency_key else None,
        **fields,
    )


def creation_event(proposal: Proposal, ctx: CallerContext, fingerprint: str) -> ProposalEvent:
    params = proposal.params
    return _event(
        proposal,
        EventType.PROPOSAL_CREATE,
        proposal.proposer,
        proposal.created_at,
        ctx,
        fingerprint,
        counterparty=params.target,
        data={
            "target": params.target,
            # amounts as strings: uint256 does not survive every JSON column type
            "min_amount": str(params.min_amount),
            "max_amount": str(params.max_amount),
            "investor_share_percent": params.investor_share_percent,
            "description": params.description,
        },
    )


def investment_event(
    proposal: Proposal, ctx: CallerContext, amount: int, now: int, fingerprint: str
) -> ProposalEvent:
    return _event(proposal, EventType.INVESTMENT, ctx.identity, now, ctx, fingerprint, amount=amount)


def funding_event(
    proposal: Proposal, ctx: CallerContext, event_type: EventType, now: int, fingerprint: str
) -> ProposalEvent:
    return _event(proposal, event_type, ctx.identity, now, ctx, fingerprint)


def execution_event(
    proposal: Proposal, ctx: CallerContext, now: int, fingerprint: Optional[str]
) -> ProposalEvent:
    return _event(
        proposal,
        EventType.PROPOSAL_EXECUTE,
        ctx.identity,
        now,
        ctx,
        fingerprint,
        counterparty=proposal.target,
        amount=proposal.current_amount,
        transfer_reference=execute_reference(proposal),
    )


def payment_event(
    proposal: Proposal, ctx: CallerContext, payout: Payout, profit_amount: int, now: int
) -> ProposalEvent:
    # Payments are steps of a distribution; only the final event carries the key
    return _event(
        proposal,
        EventType.PROFIT_PAYMENT,
        ctx.identity,
        now,
        counterparty=payout.recipient,
        amount=payout.amount,
        transfer_reference=payout_reference(proposal, payout),
        data={"role": payout.role.value, "profit_amount": str(profit_amount)},
    )


def distribution_event(
    proposal: Proposal, ctx: CallerContext, profit_amount: int, now: int, fingerprint: str
) -> ProposalEvent:
    return _event(
        proposal,
        EventType.PROFIT_DISTRIBUTE,
        ctx.identity,
        now,
        ctx,
        fingerprint,
        amount=profit_amount,
    )


@dataclass(frozen=True)
class IdempotencyRecord:
    key: str
    fingerprint: str
    proposal_address: str


class ProposalJournal:
    """Append-only store of ProposalEvent rows"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def append(self, *events: ProposalEvent) -> None:
        """
        Write ``events`` in one short transaction.

        Raises:
            IdempotencyConflict: an event reuses a stored idempotency key
            JournalError: the database rejected the write
        """
        async with self.session_factory() as session:
            session.add_all(events)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                keys = [event.idempotency_key for event in events if event.idempotency_key]
                if keys:
                    raise IdempotencyConflict(
                        f"Idempotency key {keys[0]} was already used"
                    ) from e
                logger.error("Journal write failed", error=str(e))
                raise JournalError(f"Journal write failed: {e.orig}") from e
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Journal write failed", error=str(e))
                raise JournalError(f"Journal write failed: {e}") from e

    async def load(self) -> List[ProposalEvent]:
        async with self.session_factory() as session:
            result = await session.execute(select(ProposalEvent).order_by(ProposalEvent.id))
            return list(result.scalars().all())

    async def replay(self, registry: ProposalRegistry) -> List[IdempotencyRecord]:
        """
        Rebuild ``registry`` by re-applying every journaled event in order.

        Reopen events are applied regardless of the current
        ``allow_funding_reopen`` setting; they were legal when recorded.
        Proposals take the registry's current ``cooldown_seconds``, so a
        changed setting applies to proposals created before the change.

        Args:
            registry: Empty registry to populate

        Returns:
            The idempotency keys of all journaled commands
        """
        events = await self.load()
        records: List[IdempotencyRecord] = []
        for event in events:
            apply_event(registry, event)
            if event.idempotency_key and event.request_fingerprint:
                records.append(
                    IdempotencyRecord(
                        key=event.idempotency_key,
                        fingerprint=event.request_fingerprint,
                        proposal_address=event.proposal_address,
                    )
                )

        logger.info(
            "Replayed proposal journal",
            event_count=len(events),
            proposal_count=len(registry),
        )
        return records


def apply_event(registry: ProposalRegistry, event: ProposalEvent) -> None:
    """Re-apply one journaled event through the normal lifecycle transitions"""
    if event.event_type == EventType.PROPOSAL_CREATE:
        data: Dict[str, Any] = event.data or {}
        params = ProposalParams(
            proposal_id=event.proposal_id,
            target=data["target"],
            min_amount=int(data["min_amount"]),
            max_amount=int(data["max_amount"]),
            investor_share_percent=data["investor_share_percent"],
            description=data.get("description"),
        )
        proposal = registry.prepare(
            params, event.actor, event.occurred_at, address=event.proposal_address
        )
        registry.register(proposal)
        return

    proposal = registry.get(event.proposal_address)

    if event.event_type == EventType.INVESTMENT:
        proposal.invest(event.actor, event.amount)
    elif event.event_type == EventType.FUNDING_CLOSE:
        proposal.close_funding(event.actor)
    elif event.event_type == EventType.FUNDING_REOPEN:
        proposal.reopen_funding(event.actor, allowed=True)
    elif event.event_type == EventType.PROPOSAL_EXECUTE:
        proposal.execute(event.actor, event.occurred_at)
    elif event.event_type == EventType.PROFIT_PAYMENT:
        data = event.data or {}
        # cooldown was checked when the payment was made
        plan = proposal.distribution or proposal.plan_distribution(
            int(data["profit_amount"]), event.occurred_at
        )
        proposal.record_payout(
            plan, event.counterparty, PayoutRole(data["role"]), event.transfer_reference
        )
    elif event.event_type == EventType.PROFIT_DISTRIBUTE:
        proposal.complete_distribution(event.occurred_at)
    else:
        raise ValueError(f"Unknown event type {event.event_type}")
