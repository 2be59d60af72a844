"""
Submission pipeline: Jito bundles first, throttled direct RPC as fallback.
"""
import asyncio
import logging
import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .errors import TransportError
from .jito_client import JitoClient
from .solana_client import SolanaClient
from .tx_builder import build_transfer
from .utils import get_terminal_colors

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

BUNDLE_CHUNK_SIZE = 4
MAX_JITTER_MS = 120


class SubmissionPath(str, Enum):
    BUNDLE = "bundle"
    DIRECT = "direct"
    NONE = "none"


@dataclass
class SubmissionResult:
    """Identifiers in submission order: bundle ids or transaction signatures."""
    path: SubmissionPath
    identifiers: List[str] = field(default_factory=list)


def format_sim_logs(logs: Sequence[str], tail: int = 20) -> str:
    """
    Format simulation logs, showing only the last N lines unless DEBUG is on.
    """
    if not logs:
        return "  (no logs)"
    if logger.isEnabledFor(logging.DEBUG):
        lines_to_show = list(logs)
    else:
        lines_to_show = list(logs)[-tail:]
    return "\n".join(f"  {line}" for line in lines_to_show)


class SubmissionPipeline:
    """Sends a batch of signed transactions in the order given."""

    def __init__(
        self,
        solana: SolanaClient,
        jito: Optional[JitoClient],
        treasury: Keypair,
        tip_lamports: int = 0,
        send_txs_per_sec: float = 1.0,
        force_rpc: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None
    ):
        """
        Args:
            solana: RPC client for direct sends
            jito: Bundle relay client (None disables the bundle path)
            treasury: Pays the bundle tip
            tip_lamports: Tip per bundle, 0 sends bundles without a tip
            send_txs_per_sec: Direct-path throughput
            force_rpc: Always use the direct path
            sleep: Injectable async sleep (seconds)
            rng: Injectable RNG for tip account choice and jitter
        """
        self.solana = solana
        self.jito = jito
        self.treasury = treasury
        self.tip_lamports = tip_lamports
        self.send_txs_per_sec = max(1.0, send_txs_per_sec)
        self.force_rpc = force_rpc
        self.sleep = sleep
        self.rng = rng or random.Random()

    @property
    def interval_ms(self) -> int:
        """Minimum gap between direct sends, before jitter."""
        return math.ceil(1000 / self.send_txs_per_sec)

    async def submit(
        self,
        transactions: Sequence[VersionedTransaction],
        blockhash: Hash,
        force_direct: bool = False
    ) -> SubmissionResult:
        """
        Submit a batch.

        The bundle path is all-or-nothing per batch: any relay failure sends
        the whole batch through the direct path instead.

        Args:
            transactions: Signed transactions, in wallet order
            blockhash: Batch blockhash (used for the tip transaction)
            force_direct: Skip the bundle path for this batch

        Returns:
            SubmissionResult
        """
        if not transactions:
            return SubmissionResult(path=SubmissionPath.NONE)

        if not (self.force_rpc or force_direct or self.jito is None):
            try:
                bundle_ids = await self._submit_bundles(transactions, blockhash)
                return SubmissionResult(path=SubmissionPath.BUNDLE, identifiers=bundle_ids)
            except Exception as e:
                logger.warning(f"{colors['YELLOW']}Jito unavailable, falling back to direct RPC: {e}{colors['RESET']}")

        signatures = await self.submit_direct(transactions)
        return SubmissionResult(path=SubmissionPath.DIRECT, identifiers=signatures)

    async def _submit_bundles(
        self,
        transactions: Sequence[VersionedTransaction],
        blockhash: Hash
    ) -> List[str]:
        chunks = [
            list(transactions[i:i + BUNDLE_CHUNK_SIZE])
            for i in range(0, len(transactions), BUNDLE_CHUNK_SIZE)
        ]
        tips = await self._build_tip_transactions(len(chunks), blockhash)

        bundle_ids = []
        for chunk, tip in zip(chunks, tips):
            bundle = ([tip] if tip is not None else []) + chunk
            try:
                bundle_ids.append(await self.jito.send_bundle(bundle))
            except Exception:
                if bundle_ids:
                    # The direct fallback resends these chunks too
                    logger.warning(
                        f"{colors['YELLOW']}{len(bundle_ids)} bundle(s) already accepted before the relay failed: "
                        f"{', '.join(bundle_ids)}{colors['RESET']}"
                    )
                raise
        return bundle_ids

    async def _build_tip_transactions(self, count: int, blockhash: Hash) -> List[Optional[VersionedTransaction]]:
        """
        One tip transfer per bundle, treasury -> random tip account.

        Tip accounts are drawn without repetition (cycling when there are
        more bundles than accounts) so tips in one batch do not collide.
        """
        if self.tip_lamports <= 0:
            return [None] * count

        tip_accounts = await self.jito.get_tip_accounts()
        shuffled = self.rng.sample(tip_accounts, len(tip_accounts))
        tips = []
        for i in range(count):
            tip_account = Pubkey.from_string(shuffled[i % len(shuffled)])
            tips.append(build_transfer(self.treasury, tip_account, self.tip_lamports, blockhash))
        return tips

    async def submit_direct(self, transactions: Sequence[VersionedTransaction]) -> List[str]:
        """
        Send one at a time with ceil(1000/rate) + jitter ms between sends.

        A failed send is logged and left out of the result.
        """
        signatures = []
        for i, tx in enumerate(transactions):
            try:
                sig = await self.solana.send_transaction(tx, skip_preflight=False, max_retries=3)
                signatures.append(sig)
                logger.info(f"Sent {colors['CYAN']}{sig}{colors['RESET']}")
            except TransportError as e:
                logger.error(f"{colors['RED']}RPC send failed: {e}{colors['RESET']}")
                if e.logs:
                    logger.error(f"Simulation logs:\n{format_sim_logs(e.logs)}")

            if i < len(transactions) - 1:
                jitter_ms = self.rng.randint(0, MAX_JITTER_MS)
                await self.sleep((self.interval_ms + jitter_ms) / 1000)
        return signatures
