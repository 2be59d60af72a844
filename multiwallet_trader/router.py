"""
Venue router: bonding curve first, Jupiter aggregator as universal fallback.

Each (wallet, operation) runs through a small state machine:

    START -> TRY_CURVE -> BUILT
                 | failure
             TRY_AGGREGATOR -> BUILT
                 | failure
               FAILED

Venue attempts return VenueAttempt values; the router inspects them instead
of branching on exceptions.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .bonding_curve import BondingCurveVenue
from .errors import VenueUnavailable
from .jupiter_client import WSOL_MINT, JupiterClient
from .tx_builder import sign_prebuilt
from .utils import get_terminal_colors
from .wallets import Wallet

colors = get_terminal_colors()

logger = logging.getLogger(__name__)


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class Venue(str, Enum):
    CURVE = "curve"
    AGGREGATOR = "aggregator"
    NONE = "none"

    @property
    def display_name(self) -> str:
        return {"curve": "Pump.fun", "aggregator": "Jupiter", "none": "-"}[self.value]


class RouteState(str, Enum):
    START = "start"
    TRY_CURVE = "try_curve"
    TRY_AGGREGATOR = "try_aggregator"
    BUILT = "built"
    FAILED = "failed"


@dataclass
class VenueAttempt:
    """Result-or-failure of one venue."""
    venue: Venue
    transaction: Optional[VersionedTransaction] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.transaction is not None


@dataclass
class RouteResult:
    """Terminal state of the router for one wallet."""
    state: RouteState
    venue: Venue
    transaction: Optional[VersionedTransaction] = None
    error: Optional[str] = None
    attempts: List[VenueAttempt] = field(default_factory=list)

    @property
    def built(self) -> bool:
        return self.state == RouteState.BUILT


class Router:
    """Builds one signed swap per wallet, choosing the venue."""

    def __init__(
        self,
        curve_venue: BondingCurveVenue,
        jupiter: JupiterClient,
        slippage_bps: int,
        curve_first: bool = True
    ):
        self.curve_venue = curve_venue
        self.jupiter = jupiter
        self.slippage_bps = slippage_bps
        self.curve_first = curve_first
        # Mints whose curve is missing/complete, for the current operation
        self._curve_unavailable: Set[str] = set()

    def begin_operation(self):
        """Forget per-operation venue knowledge before a new batch."""
        self._curve_unavailable.clear()

    async def route(
        self,
        side: Side,
        wallet: Wallet,
        mint: Pubkey,
        amount: int,
        blockhash: Hash
    ) -> RouteResult:
        """
        Build a signed swap for one wallet.

        Args:
            side: BUY (amount in lamports) or SELL (amount in token units)
            wallet: Wallet paying and signing
            mint: Token mint
            amount: Input amount in smallest units
            blockhash: Batch blockhash

        Returns:
            RouteResult in BUILT or FAILED state
        """
        attempts: List[VenueAttempt] = []
        state = RouteState.START

        while state not in (RouteState.BUILT, RouteState.FAILED):
            if state == RouteState.START:
                if self.curve_first and str(mint) not in self._curve_unavailable:
                    state = RouteState.TRY_CURVE
                else:
                    state = RouteState.TRY_AGGREGATOR

            elif state == RouteState.TRY_CURVE:
                attempt = await self._try_curve(side, wallet, mint, amount, blockhash)
                attempts.append(attempt)
                if attempt.ok:
                    state = RouteState.BUILT
                else:
                    logger.debug(f"{wallet.label}: curve {side.value} unavailable ({attempt.error}), trying aggregator")
                    state = RouteState.TRY_AGGREGATOR

            elif state == RouteState.TRY_AGGREGATOR:
                attempt = await self._try_aggregator(side, wallet, mint, amount, blockhash)
                attempts.append(attempt)
                state = RouteState.BUILT if attempt.ok else RouteState.FAILED

        last = attempts[-1] if attempts else None
        if state == RouteState.BUILT:
            return RouteResult(state=state, venue=last.venue, transaction=last.transaction, attempts=attempts)

        error = str(last.error) if last and last.error else "no venue attempted"
        logger.warning(f"{colors['RED']}{wallet.label}: {side.value} build failed: {error}{colors['RESET']}")
        return RouteResult(state=state, venue=Venue.NONE, error=error, attempts=attempts)

    async def _try_curve(
        self,
        side: Side,
        wallet: Wallet,
        mint: Pubkey,
        amount: int,
        blockhash: Hash
    ) -> VenueAttempt:
        try:
            if side == Side.BUY:
                tx = await self.curve_venue.build_buy(wallet.keypair, mint, amount, blockhash)
            else:
                tx = await self.curve_venue.build_sell(wallet.keypair, mint, amount, blockhash)
            return VenueAttempt(venue=Venue.CURVE, transaction=tx)
        except VenueUnavailable as e:
            # Missing or migrated curve stays unusable for this operation
            self._curve_unavailable.add(str(mint))
            return VenueAttempt(venue=Venue.CURVE, error=e)
        except Exception as e:
            return VenueAttempt(venue=Venue.CURVE, error=e)

    async def _try_aggregator(
        self,
        side: Side,
        wallet: Wallet,
        mint: Pubkey,
        amount: int,
        blockhash: Hash
    ) -> VenueAttempt:
        if side == Side.BUY:
            input_mint, output_mint = WSOL_MINT, str(mint)
        else:
            input_mint, output_mint = str(mint), WSOL_MINT

        try:
            quote = await self.jupiter.get_quote(input_mint, output_mint, amount, self.slippage_bps)
            unsigned = await self.jupiter.build_swap_transaction(str(wallet.pubkey), quote)
            tx = sign_prebuilt(unsigned, wallet.keypair, blockhash)
            return VenueAttempt(venue=Venue.AGGREGATOR, transaction=tx)
        except Exception as e:
            return VenueAttempt(venue=Venue.AGGREGATOR, error=e)
