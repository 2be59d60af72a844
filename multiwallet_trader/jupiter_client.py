"""
Jupiter API client for quotes and unsigned swap transactions.
"""
import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from solders.transaction import VersionedTransaction

from .errors import TransportError, VenueUnavailable
from .retry import RetryPolicy, linear_backoff

logger = logging.getLogger(__name__)

WSOL_MINT = "So11111111111111111111111111111111111111112"


@dataclass
class JupiterQuote:
    """Quote response from Jupiter API. Consumed once, never cached."""
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    min_out: int  # otherAmountThreshold: slippage-bounded minimum
    route_plan: List[Dict[str, Any]]
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)
    price_impact_pct: float = 0.0
    time_taken: Optional[float] = None

    @classmethod
    def from_response(cls, data: Dict[str, Any], time_taken: Optional[float] = None) -> "JupiterQuote":
        out_amount = int(data.get("outAmount", 0))
        return cls(
            input_mint=data["inputMint"],
            output_mint=data["outputMint"],
            in_amount=int(data["inAmount"]),
            out_amount=out_amount,
            min_out=int(data.get("otherAmountThreshold", out_amount)),
            route_plan=data["routePlan"],
            raw=data,
            price_impact_pct=float(data.get("priceImpactPct") or 0),
            time_taken=time_taken
        )


class JupiterClient:
    """Client for the Jupiter swap aggregator with a uniform retry policy."""

    DEFAULT_API_URL = "https://quote-api.jup.ag/v6"

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize Jupiter API client.

        Args:
            api_url: Base URL exposing /quote and /swap
            api_key: Optional API key, sent as x-api-key
            timeout: Request timeout in seconds
            retry_policy: Defaults to 3 attempts with 250ms × attempt backoff
        """
        self.api_url = (api_url or self.DEFAULT_API_URL).rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=3,
            backoff=linear_backoff(0.25),
            retry_on=(TransportError,)
        )

        headers = {"Content-Type": "application/json"}
        if api_key:
            # Jupiter API expects API key in x-api-key header, not Authorization
            headers["x-api-key"] = api_key

        self.client = httpx.AsyncClient(timeout=timeout, headers=headers)

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(f"GET {url} returned {e.response.status_code}: {e.response.text[:200]}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"GET {url} failed: {e}") from e

    async def _post_json(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.client.post(url, json=body)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(f"POST {url} returned {e.response.status_code}: {e.response.text[:200]}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"POST {url} failed: {e}") from e

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int
    ) -> JupiterQuote:
        """
        Get an ExactIn quote.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Amount in smallest unit (lamports for SOL)
            slippage_bps: Max slippage in basis points

        Returns:
            JupiterQuote

        Raises:
            VenueUnavailable: No route, or all attempts failed
        """
        url = f"{self.api_url}/quote"
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": slippage_bps,
            "swapMode": "ExactIn",
            "onlyDirectRoutes": "false",
            "asLegacyTransaction": "false"
        }
        start_time = time.monotonic()

        async def _fetch() -> JupiterQuote:
            data = await self._get_json(url, params)
            if not data or not data.get("routePlan"):
                raise VenueUnavailable(f"Jupiter quote: no route {input_mint[:8]}... -> {output_mint[:8]}...")
            try:
                return JupiterQuote.from_response(data, time_taken=time.monotonic() - start_time)
            except (KeyError, TypeError, ValueError) as e:
                raise VenueUnavailable(f"Jupiter quote: malformed quote ({e!r})") from e

        try:
            quote = await self.retry_policy.run(_fetch, description="Jupiter quote")
        except TransportError as e:
            raise VenueUnavailable(f"Jupiter quote failed: {e}") from e

        logger.debug(
            f"Quote {input_mint[:8]}... -> {output_mint[:8]}... "
            f"in={quote.in_amount} out={quote.out_amount} min_out={quote.min_out} "
            f"hops={len(quote.route_plan)}"
        )
        return quote

    async def build_swap_transaction(
        self,
        user_public_key: str,
        quote: JupiterQuote
    ) -> VersionedTransaction:
        """
        Get the unsigned swap transaction for a quote.

        Signing is left to the caller.

        Raises:
            VenueUnavailable: All attempts failed or the response is unusable
        """
        url = f"{self.api_url}/swap"
        body = {
            "quoteResponse": quote.raw,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": "auto"
        }

        async def _fetch() -> VersionedTransaction:
            data = await self._post_json(url, body)
            swap_transaction = data.get("swapTransaction") if data else None
            if not swap_transaction:
                raise TransportError("Jupiter swap response has no swapTransaction")
            try:
                raw = base64.b64decode(swap_transaction)
                return VersionedTransaction.from_bytes(raw)
            except Exception as e:
                raise VenueUnavailable(f"Cannot deserialize Jupiter swap transaction: {e}") from e

        try:
            tx = await self.retry_policy.run(_fetch, description="Jupiter swap build")
        except TransportError as e:
            raise VenueUnavailable(f"Jupiter swap build failed: {e}") from e

        logger.debug(f"Swap transaction built for {user_public_key[:8]}...: {len(tx.message.instructions)} instructions")
        return tx

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
