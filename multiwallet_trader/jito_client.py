"""
Jito block-engine client: tip accounts and bundle submission over JSON-RPC.
"""
import logging
from typing import Any, List, Sequence

import base58
import httpx
from solders.transaction import VersionedTransaction

from .errors import TransportError, ValidationError

logger = logging.getLogger(__name__)

MAX_BUNDLE_SIZE = 5


class JitoClient:
    """Client for a Jito block engine."""

    def __init__(self, host: str, timeout: float = 10.0):
        """
        Args:
            host: Block-engine host without scheme, e.g. ny.mainnet.block-engine.jito.wtf
            timeout: Request timeout in seconds
        """
        self.host = host
        self.bundles_url = f"https://{host}/api/v1/bundles"
        self.client = httpx.AsyncClient(timeout=timeout, headers={"Content-Type": "application/json"})

    async def _call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            response = await self.client.post(self.bundles_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(f"Jito {method} returned {e.response.status_code}: {e.response.text[:200]}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Jito {method} failed: {e}") from e

        if "error" in data:
            raise TransportError(f"Jito {method} rejected: {data['error']}")
        if "result" not in data:
            raise TransportError(f"Jito {method}: malformed response")
        return data["result"]

    async def get_tip_accounts(self) -> List[str]:
        """
        Raises:
            TransportError: If the call fails or returns no accounts
        """
        accounts = await self._call("getTipAccounts", [])
        if not accounts:
            raise TransportError("Jito returned no tip accounts")
        return list(accounts)

    async def send_bundle(self, transactions: Sequence[VersionedTransaction]) -> str:
        """
        Submit signed transactions as one atomically-ordered bundle.

        Returns:
            Bundle id

        Raises:
            ValidationError: Empty bundle or more than 5 transactions
            TransportError: Relay rejected the bundle
        """
        if not 1 <= len(transactions) <= MAX_BUNDLE_SIZE:
            raise ValidationError(f"Bundle must hold 1-{MAX_BUNDLE_SIZE} transactions, got {len(transactions)}")
        encoded = [base58.b58encode(bytes(tx)).decode("ascii") for tx in transactions]
        bundle_id = await self._call("sendBundle", [encoded])
        logger.info(f"Jito bundle accepted: {bundle_id} ({len(transactions)} txs)")
        return str(bundle_id)

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
