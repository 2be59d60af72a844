"""
Solana RPC client for balances, account reads, blockhash and transaction sending.
"""
import logging
import struct
from typing import List, Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from spl.token.instructions import get_associated_token_address

from .errors import TransportError, ValidationError

logger = logging.getLogger(__name__)

# SPL token account: mint(32) owner(32) amount(u64)
TOKEN_ACCOUNT_AMOUNT_OFFSET = 64
# SPL mint: mint_authority option(36) supply(u64) decimals(u8)
MINT_DECIMALS_OFFSET = 44


def extract_send_logs(error: Exception) -> List[str]:
    """
    Pull simulation log lines out of a preflight failure.

    solana-py raises RPCException whose first argument is the RPC error
    object; preflight failures carry `.data.logs`.
    """
    detail = error.args[0] if error.args else None
    data = getattr(detail, "data", None)
    logs = getattr(data, "logs", None)
    if not logs or not isinstance(logs, (list, tuple)):
        return []
    return [str(line) for line in logs]


class SolanaClient:
    """Client for Solana RPC operations with failover support."""

    def __init__(self, rpc_url: str, fallback_rpc_url: Optional[str] = None):
        self.rpc_url_primary = rpc_url
        self.rpc_url_fallback = fallback_rpc_url
        self._active_rpc_url = rpc_url
        self._failover_used = False
        self.client = AsyncClient(rpc_url, commitment=Confirmed)

    async def _switch_to_fallback(self, reason: str) -> bool:
        """
        Switch to fallback RPC if available.

        Returns:
            True if switched to fallback, False if no fallback available
        """
        if not self.rpc_url_fallback or self._active_rpc_url != self.rpc_url_primary:
            return False

        if not self._failover_used:
            # Log domains only, URLs may embed API keys
            primary_domain = self.rpc_url_primary.split('//')[-1].split('/')[0]
            fallback_domain = self.rpc_url_fallback.split('//')[-1].split('/')[0]
            logger.warning(f"RPC failover: PRIMARY ({primary_domain}) -> FALLBACK ({fallback_domain}), reason: {reason}")
            self._failover_used = True

        try:
            await self.client.close()
        except Exception as e:
            logger.debug(f"Error closing primary RPC client: {e}")

        self._active_rpc_url = self.rpc_url_fallback
        self.client = AsyncClient(self.rpc_url_fallback, commitment=Confirmed)
        return True

    def _is_failover_error(self, error: Exception) -> bool:
        """Rate limits, timeouts and connection failures trigger failover."""
        error_str = str(error).lower()
        if '429' in error_str or 'rate limit' in error_str or 'too many requests' in error_str:
            return True
        if 'timeout' in error_str or 'timed out' in error_str:
            return True
        if type(error).__name__ in ('ConnectError', 'ConnectTimeout', 'NetworkError', 'TimeoutError', 'ReadTimeout'):
            return True
        return 'connection' in error_str

    async def _with_failover(self, coro_func, *args, **kwargs):
        """
        Execute coroutine, retrying once on the fallback RPC for network errors.

        Raises:
            Exception: Original error if not failover-worthy, else the fallback's error
        """
        try:
            return await coro_func(*args, **kwargs)
        except Exception as e:
            if self._is_failover_error(e) and await self._switch_to_fallback(str(e)):
                try:
                    return await coro_func(*args, **kwargs)
                except Exception as e2:
                    logger.error(f"Both primary and fallback RPC failed. Last error: {e2}")
                    raise e2 from e
            raise

    async def get_balance(self, pubkey: Pubkey) -> int:
        """
        Get SOL balance in lamports.

        Raises:
            TransportError: If the RPC call fails
        """
        async def _get():
            resp = await self.client.get_balance(pubkey, commitment=Confirmed)
            return resp.value

        try:
            return await self._with_failover(_get)
        except Exception as e:
            raise TransportError(f"Error getting balance for {pubkey}: {e}") from e

    async def get_account_data(self, pubkey: Pubkey) -> Optional[bytes]:
        """
        Read raw account data.

        Returns:
            Account data bytes, or None if the account does not exist

        Raises:
            TransportError: If the RPC call fails
        """
        async def _get():
            resp = await self.client.get_account_info(pubkey, commitment=Confirmed, encoding="base64")
            if resp.value is None:
                return None
            return bytes(resp.value.data)

        try:
            return await self._with_failover(_get)
        except Exception as e:
            raise TransportError(f"Error reading account {pubkey}: {e}") from e

    async def account_exists(self, pubkey: Pubkey) -> bool:
        return await self.get_account_data(pubkey) is not None

    async def get_token_balance(self, owner: Pubkey, mint: Pubkey) -> int:
        """
        Raw token balance of the owner's associated token account.

        Returns:
            Amount in smallest units, 0 if the account does not exist
        """
        ata = get_associated_token_address(owner, mint)
        data = await self.get_account_data(ata)
        if data is None or len(data) < TOKEN_ACCOUNT_AMOUNT_OFFSET + 8:
            return 0
        return struct.unpack_from("<Q", data, TOKEN_ACCOUNT_AMOUNT_OFFSET)[0]

    async def get_mint_decimals(self, mint: Pubkey) -> int:
        """
        Read decimals from a mint account.

        Raises:
            ValidationError: If the address is not a mint
        """
        data = await self.get_account_data(mint)
        if data is None or len(data) <= MINT_DECIMALS_OFFSET:
            raise ValidationError(f"{mint} is not a token mint")
        return data[MINT_DECIMALS_OFFSET]

    async def get_latest_blockhash(self) -> Hash:
        """
        Get the latest blockhash for transaction building.

        Raises:
            TransportError: If the RPC call fails
        """
        async def _get():
            resp = await self.client.get_latest_blockhash(commitment=Confirmed)
            return resp.value.blockhash

        try:
            return await self._with_failover(_get)
        except Exception as e:
            raise TransportError(f"Error getting latest blockhash: {e}") from e

    async def send_transaction(
        self,
        tx: VersionedTransaction,
        skip_preflight: bool = False,
        max_retries: int = 3
    ) -> str:
        """
        Send a signed VersionedTransaction.

        Retries are delegated to the node via maxRetries.

        Returns:
            Transaction signature (base58)

        Raises:
            TransportError: With simulation logs if preflight failed
        """
        opts = TxOpts(skip_preflight=skip_preflight, max_retries=max_retries, preflight_commitment=Confirmed)

        async def _send():
            resp = await self.client.send_transaction(tx, opts=opts)
            return str(resp.value)

        try:
            sig = await self._with_failover(_send)
        except Exception as e:
            raise TransportError(f"Transaction send failed: {e}", logs=extract_send_logs(e)) from e

        logger.debug(f"Transaction sent: {sig}")
        return sig

    async def close(self):
        """Close RPC client."""
        await self.client.close()
