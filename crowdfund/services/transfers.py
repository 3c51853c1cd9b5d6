"""External fund transfer gateways"""
import hashlib
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx
import structlog

from crowdfund.config import Settings
from crowdfund.services.errors import TransferFailed

logger = structlog.get_logger()


@dataclass(frozen=True)
class TransferReceipt:
    """Confirmation of a completed transfer"""
    reference: str
    recipient: str
    amount: int
    transaction_id: str


class TransferGateway:
    """
    Moves value to a recipient on the ledger of record.

    ``transfer`` either completes fully and returns a receipt or raises
    TransferFailed. ``reference`` identifies the payment; repeating a transfer
    with the same reference must not move funds twice.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def transfer(self, recipient: str, amount: int, reference: str) -> TransferReceipt:
        raise NotImplementedError


class InMemoryTransferGateway(TransferGateway):
    """Gateway for demo mode and tests; records every transfer"""

    def __init__(self):
        self._receipts: Dict[str, TransferReceipt] = {}

    @property
    def receipts(self) -> List[TransferReceipt]:
        return list(self._receipts.values())

    def total_sent_to(self, recipient: str) -> int:
        return sum(r.amount for r in self._receipts.values() if r.recipient == recipient)

    async def transfer(self, recipient: str, amount: int, reference: str) -> TransferReceipt:
        existing = self._receipts.get(reference)
        if existing is not None:
            return existing
        receipt = TransferReceipt(
            reference=reference,
            recipient=recipient,
            amount=amount,
            # Deterministic placeholder in place of a ledger transaction hash
            transaction_id="0x" + hashlib.sha256(reference.encode()).hexdigest(),
        )
        self._receipts[reference] = receipt
        logger.info("Recorded transfer", recipient=recipient, amount=amount, reference=reference)
        return receipt


class LedgerClient(TransferGateway):
    """HTTP client for a remote fund-transfer service"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        """Open the HTTP connection pool"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
            logger.info("Connected to ledger service", url=self.base_url)

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from ledger service")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Ledger client not connected. Call connect() first.")
        return self._client

    async def transfer(self, recipient: str, amount: int, reference: str) -> TransferReceipt:
        """
        Request a transfer from the ledger service.

        Amounts are sent as decimal strings so uint256 values survive JSON
        clients that parse numbers as doubles.
        """
        try:
            response = await self.client.post(
                "/transfers",
                json={"recipient": recipient, "amount": str(amount), "reference": reference},
                headers={"Idempotency-Key": reference},
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Ledger rejected transfer",
                reference=reference,
                status_code=e.response.status_code,
            )
            raise TransferFailed(
                f"Ledger rejected transfer {reference} with status {e.response.status_code}",
                reference=reference,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Ledger transfer failed", reference=reference, error=str(e))
            raise TransferFailed(f"Transfer {reference} failed: {e}", reference=reference) from e

        transaction_id = body.get("transaction_id") if isinstance(body, dict) else None
        if not transaction_id:
            raise TransferFailed(
                f"Ledger response for transfer {reference} has no transaction_id",
                reference=reference,
            )
        return TransferReceipt(
            reference=reference,
            recipient=recipient,
            amount=amount,
            transaction_id=str(transaction_id),
        )


def build_transfer_gateway(settings: Settings) -> TransferGateway:
    """Remote ledger when ``ledger_url`` is configured, in-memory otherwise"""
    if settings.ledger_url:
        return LedgerClient(settings.ledger_url, timeout=settings.ledger_timeout_seconds)
    logger.warning("No ledger_url configured - transfers are recorded in memory only")
    return InMemoryTransferGateway()
