"""Caller identities and proposal addresses"""
import hashlib
import re
from dataclasses import dataclass
from typing import Optional

from crowdfund.services.errors import ValidationError

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_identity(value: object) -> bool:
    return isinstance(value, str) and bool(ADDRESS_PATTERN.match(value))


def normalize_identity(value: object, field: str = "identity") -> str:
    """
    Validate a wallet-style identity and return its canonical form.

    Identities compare case-insensitively, so the canonical form is lowercase.
    Mixed-case checksums are not verified.
    """
    if not is_valid_identity(value):
        raise ValidationError(f"Invalid {field}: expected 0x followed by 40 hex digits")
    return value.lower()


def derive_proposal_address(sequence: int, proposal_id: int, proposer: str) -> str:
    """Deterministic, unique address for the ``sequence``-th proposal created"""
    seed = f"crowdfund:proposal:{sequence}:{proposal_id}:{proposer}".encode()
    return "0x" + hashlib.sha256(seed).hexdigest()[:40]


@dataclass(frozen=True)
class CallerContext:
    """
    Explicit per-request caller context.

    Carries the verified caller identity and an optional idempotency key. It is
    created by the presentation layer for each request and passed to every
    engine command; the engine never looks up the caller from ambient state.
    """
    identity: str
    idempotency_key: Optional[str] = None

    @classmethod
    def for_caller(cls, identity: str, idempotency_key: Optional[str] = None) -> "CallerContext":
        return cls(identity=normalize_identity(identity, "caller"), idempotency_key=idempotency_key)
