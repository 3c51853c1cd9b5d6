"""
Proposal Registry

Creates proposals, assigns their addresses and indexes them by address and by
caller-supplied id. Proposals are never removed, so ids are never reused and
creation order is stable.
"""
from typing import Dict, Iterator, List, Optional

import structlog

from crowdfund.services.errors import DuplicateProposalId, NotFound, ValidationError
from crowdfund.services.identity import derive_proposal_address, normalize_identity
from crowdfund.services.lifecycle import Proposal, ProposalParams, ProposalSnapshot

logger = structlog.get_logger()


class ProposalListing:
    """
    Lazy, restartable view over the registry in creation order.

    Every iteration starts from the first proposal and yields fresh snapshots.
    Proposals created while an iteration is running are not part of it.
    """

    def __init__(self, registry: "ProposalRegistry"):
        self._registry = registry

    def __iter__(self) -> Iterator[ProposalSnapshot]:
        for proposal in self._registry.proposals():
            yield proposal.snapshot()

    def __len__(self) -> int:
        return len(self._registry)


class ProposalRegistry:
    """Owner of every proposal"""

    def __init__(self, cooldown_seconds: int):
        if cooldown_seconds < 0:
            raise ValidationError("cooldown_seconds must not be negative")
        self.cooldown_seconds = cooldown_seconds
        self._by_address: Dict[str, Proposal] = {}
        self._by_id: Dict[int, str] = {}
        self._order: List[str] = []

    def __len__(self) -> int:
        return len(self._order)

    def ensure_id_available(self, proposal_id: int) -> None:
        if proposal_id in self._by_id:
            raise DuplicateProposalId(f"Proposal id {proposal_id} is already in use")

    def prepare(
        self,
        params: ProposalParams,
        proposer: str,
        created_at: int,
        address: Optional[str] = None,
    ) -> Proposal:
        """
        Validate parameters and build a proposal without registering it.

        Args:
            params: Creation parameters
            proposer: Identity of the creator
            created_at: Creation time in epoch seconds
            address: Address to use instead of deriving one (journal replay)

        Returns:
            An unregistered Proposal; pass it to ``register``
        """
        params = params.validated()
        proposer = normalize_identity(proposer, "proposer")
        self.ensure_id_available(params.proposal_id)
        if address is None:
            address = derive_proposal_address(len(self._order), params.proposal_id, proposer)
        if address in self._by_address:
            raise DuplicateProposalId(f"Proposal address {address} is already in use")
        return Proposal(
            address=address,
            params=params,
            proposer=proposer,
            cooldown_seconds=self.cooldown_seconds,
            created_at=created_at,
        )

    def register(self, proposal: Proposal) -> Proposal:
        self.ensure_id_available(proposal.proposal_id)
        if proposal.address in self._by_address:
            raise DuplicateProposalId(f"Proposal address {proposal.address} is already in use")
        self._by_address[proposal.address] = proposal
        self._by_id[proposal.proposal_id] = proposal.address
        self._order.append(proposal.address)
        logger.info(
            "Registered proposal",
            proposal=proposal.address,
            proposal_id=proposal.proposal_id,
            proposer=proposal.proposer,
        )
        return proposal

    def create_proposal(self, params: ProposalParams, proposer: str, created_at: int) -> Proposal:
        return self.register(self.prepare(params, proposer, created_at))

    def get(self, address: str) -> Proposal:
        proposal = self._by_address.get(address.lower()) if isinstance(address, str) else None
        if proposal is None:
            raise NotFound(f"Proposal {address} not found")
        return proposal

    def get_by_id(self, proposal_id: int) -> Proposal:
        address = self._by_id.get(proposal_id)
        if address is None:
            raise NotFound(f"Proposal {proposal_id} not found")
        return self._by_address[address]

    def resolve(self, ref: str) -> Proposal:
        """Look up a proposal by ``0x`` address or by decimal id"""
        ref = str(ref).strip()
        if ref.lower().startswith("0x"):
            return self.get(ref)
        if ref.isdigit():
            return self.get_by_id(int(ref))
        raise NotFound(f"Proposal {ref} not found")

    def proposals(self) -> Iterator[Proposal]:
        """Proposals in creation order, as registered when the iteration starts"""
        for address in tuple(self._order):
            yield self._by_address[address]

    def list(self) -> ProposalListing:
        return ProposalListing(self)
