"""Crowdfunding proposal services"""
from .engine import ProposalEngine
from .registry import ProposalRegistry
from .lifecycle import Proposal, ProposalParams, ProposalSnapshot, ProposalState
from .investment_ledger import InvestmentLedger
from .transfers import InMemoryTransferGateway, LedgerClient, TransferGateway

__all__ = [
    "ProposalEngine",
    "ProposalRegistry",
    "Proposal",
    "ProposalParams",
    "ProposalSnapshot",
    "ProposalState",
    "InvestmentLedger",
    # Transfer gateways
    "TransferGateway",
    "InMemoryTransferGateway",
    "LedgerClient",
]
