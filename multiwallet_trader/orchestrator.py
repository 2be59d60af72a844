"""
Batch orchestrator: runs buy/sell/funding operations across the selected
wallets and hands the built transactions to the submission pipeline.
"""
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .errors import TraderError, ValidationError
from .router import Router, Side, Venue
from .solana_client import SolanaClient
from .submission import SubmissionPath, SubmissionPipeline, SubmissionResult
from .tx_builder import build_transfer
from .utils import fmt_sol, fmt_token, get_terminal_colors, sol_to_lamports
from .wallets import TradingSession, Wallet

colors = get_terminal_colors()

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    BUILT = "built"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class OperationOutcome:
    """Per-wallet result of one operation (display only)."""
    wallet_index: int
    pubkey: str
    status: OutcomeStatus
    venue: Venue = Venue.NONE
    amount: int = 0
    note: str = ""
    error_detail: Optional[str] = None

    def describe(self) -> str:
        label = "Main" if self.wallet_index == 0 else f"Sub#{self.wallet_index}"
        marker = "✓" if self.status == OutcomeStatus.BUILT else "•"
        text = f"{marker} {label} {self.pubkey} → {self.note}"
        if self.status == OutcomeStatus.BUILT and self.venue != Venue.NONE:
            text += f" via {self.venue.display_name}"
        if self.error_detail:
            text += f" ({self.error_detail})"
        return text


@dataclass
class BatchReport:
    """Outcomes plus submission identifiers for one operation."""
    operation: str
    outcomes: List[OperationOutcome] = field(default_factory=list)
    submission: Optional[SubmissionResult] = None

    @property
    def identifiers(self) -> List[str]:
        return list(self.submission.identifiers) if self.submission else []

    @property
    def path(self) -> SubmissionPath:
        return self.submission.path if self.submission else SubmissionPath.NONE

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    def summary_lines(self) -> List[str]:
        return [o.describe() for o in self.outcomes]


# Amount policies

@dataclass(frozen=True)
class FixedAmount:
    """Same SOL amount for every wallet."""
    sol: float


@dataclass(frozen=True)
class MaxMinusBuffer:
    """Spend the whole balance minus the configured fee buffer."""


@dataclass(frozen=True)
class Percent:
    """Sell the same percentage (0, 100] of every wallet's tokens."""
    pct: float


@dataclass(frozen=True)
class SellAll:
    """Sell the full token balance."""


@dataclass(frozen=True)
class PerWallet:
    """
    Individual amount per wallet index.

    Buys: SOL amount or "max"; sells: percent. Missing or 0 skips the wallet.
    """
    amounts: Dict[int, Union[float, str]]


BuyPolicy = Union[FixedAmount, MaxMinusBuffer, PerWallet]
SellPolicy = Union[Percent, SellAll, PerWallet]


def sell_amount_for_percent(balance: int, pct: float) -> int:
    """Token units for a percentage, with the percent truncated to 3 decimals."""
    return balance * math.floor(pct * 1000) // 100_000


def parse_pubkey(value: str, what: str = "address") -> Pubkey:
    """
    Raises:
        ValidationError: If value is not a valid base58 public key
    """
    try:
        return Pubkey.from_string(value.strip())
    except Exception as e:
        raise ValidationError(f"Invalid {what}: {value!r}") from e


def _valid_percent(pct: float) -> bool:
    return 0 < pct <= 100


def _positive(sol: float) -> bool:
    return math.isfinite(sol) and sol > 0


def _non_negative(sol: float) -> bool:
    return math.isfinite(sol) and sol >= 0


class BatchOrchestrator:
    """Runs one operation over a wallet selection using a session snapshot."""

    def __init__(
        self,
        session: TradingSession,
        solana: SolanaClient,
        router: Router,
        pipeline: SubmissionPipeline
    ):
        self.session = session
        self.solana = solana
        self.router = router
        self.pipeline = pipeline

    @property
    def config(self):
        return self.session.config

    def _select(self, selection: Sequence[int]) -> List[Wallet]:
        """
        Resolve sub-wallet indices to wallets in ascending order.

        Raises:
            ValidationError: Empty selection or an index outside 1..N
        """
        indices = sorted(set(selection))
        if not indices:
            raise ValidationError("No wallets selected")
        if indices[0] < 1:
            raise ValidationError(f"Invalid sub-wallet index {indices[0]} (1-{self.session.sub_wallet_count})")
        return [self.session.wallet(i) for i in indices]

    async def _finish(
        self,
        operation: str,
        outcomes: List[OperationOutcome],
        transactions: List[VersionedTransaction],
        blockhash: Optional[Hash],
        force_direct: bool = False
    ) -> BatchReport:
        report = BatchReport(operation=operation, outcomes=outcomes)
        if not transactions:
            logger.info(f"{operation}: nothing to send")
        else:
            report.submission = await self.pipeline.submit(transactions, blockhash, force_direct=force_direct)

        logger.info(
            f"{operation}: {colors['GREEN']}{report.count(OutcomeStatus.BUILT)}{colors['RESET']} built, "
            f"{colors['YELLOW']}{report.count(OutcomeStatus.SKIPPED)}{colors['RESET']} skipped, "
            f"{colors['RED']}{report.count(OutcomeStatus.FAILED)}{colors['RESET']} failed, "
            f"{len(report.identifiers)} submitted via {report.path.value}"
        )
        return report

    # Trading

    def _validate_buy_policy(self, policy: BuyPolicy):
        if isinstance(policy, FixedAmount):
            if not _positive(policy.sol):
                raise ValidationError(f"Invalid SOL amount: {policy.sol}")
        elif not isinstance(policy, (MaxMinusBuffer, PerWallet)):
            raise ValidationError(f"Unknown buy policy: {policy!r}")

    async def _max_spend(self, wallet: Wallet) -> int:
        balance = await self.solana.get_balance(wallet.pubkey)
        return max(0, balance - sol_to_lamports(self.config.fee_buffer_sol))

    async def _buy_lamports(self, wallet: Wallet, policy: BuyPolicy) -> Tuple[Optional[int], str]:
        """Spend for one wallet, or (None, reason) when the wallet must be skipped."""
        if isinstance(policy, FixedAmount):
            return sol_to_lamports(policy.sol), ""
        if isinstance(policy, MaxMinusBuffer):
            return await self._max_spend(wallet), ""

        value = policy.amounts.get(wallet.index, 0)
        if isinstance(value, str) and value.strip().lower() == "max":
            return await self._max_spend(wallet), ""
        try:
            sol = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"invalid amount {value!r}")
        if sol == 0:
            return None, "skipped"
        if not _positive(sol):
            raise ValidationError(f"invalid amount {value!r}")
        return sol_to_lamports(sol), ""

    async def buy(self, mint: str, selection: Sequence[int], policy: BuyPolicy) -> BatchReport:
        """
        Buy a token from every selected wallet.

        Args:
            mint: Token mint address
            selection: Sub-wallet indices
            policy: FixedAmount, MaxMinusBuffer or PerWallet (SOL or "max")

        Returns:
            BatchReport
        """
        mint_pubkey = parse_pubkey(mint, "mint address")
        self._validate_buy_policy(policy)
        wallets = self._select(selection)
        await self.solana.get_mint_decimals(mint_pubkey)

        blockhash = await self.solana.get_latest_blockhash()
        self.router.begin_operation()
        min_spend = sol_to_lamports(self.config.min_spend_sol)
        outcomes: List[OperationOutcome] = []
        transactions: List[VersionedTransaction] = []

        for wallet in wallets:
            outcome = OperationOutcome(wallet_index=wallet.index, pubkey=str(wallet.pubkey), status=OutcomeStatus.FAILED)
            outcomes.append(outcome)
            try:
                spend, skip_reason = await self._buy_lamports(wallet, policy)
            except TraderError as e:
                outcome.note, outcome.error_detail = "Buy failed", str(e)
                continue

            if spend is None or spend < min_spend:
                outcome.status = OutcomeStatus.SKIPPED
                outcome.note = skip_reason or "insufficient SOL"
                outcome.amount = spend or 0
                continue

            result = await self.router.route(Side.BUY, wallet, mint_pubkey, spend, blockhash)
            outcome.amount = spend
            if result.built:
                transactions.append(result.transaction)
                outcome.status, outcome.venue = OutcomeStatus.BUILT, result.venue
                outcome.note = f"Buy spend {fmt_sol(spend)} SOL"
            else:
                outcome.note, outcome.error_detail = "Build failed", result.error

        return await self._finish("Buy", outcomes, transactions, blockhash)

    async def sell(self, mint: str, selection: Sequence[int], policy: SellPolicy) -> BatchReport:
        """
        Sell a token from every selected wallet.

        Args:
            mint: Token mint address
            selection: Sub-wallet indices
            policy: Percent, SellAll or PerWallet (percent per wallet)

        Returns:
            BatchReport
        """
        mint_pubkey = parse_pubkey(mint, "mint address")
        if isinstance(policy, Percent):
            if not _valid_percent(policy.pct):
                raise ValidationError(f"Invalid percent: {policy.pct}")
        elif not isinstance(policy, (SellAll, PerWallet)):
            raise ValidationError(f"Unknown sell policy: {policy!r}")
        wallets = self._select(selection)
        decimals = await self.solana.get_mint_decimals(mint_pubkey)

        blockhash = await self.solana.get_latest_blockhash()
        self.router.begin_operation()
        outcomes: List[OperationOutcome] = []
        transactions: List[VersionedTransaction] = []

        for wallet in wallets:
            outcome = OperationOutcome(wallet_index=wallet.index, pubkey=str(wallet.pubkey), status=OutcomeStatus.SKIPPED)
            outcomes.append(outcome)

            if isinstance(policy, PerWallet):
                try:
                    pct = float(policy.amounts.get(wallet.index, 0))
                except (TypeError, ValueError):
                    pct = -1.0
                if pct == 0:
                    outcome.note = "skipped"
                    continue
                if not _valid_percent(pct):
                    outcome.status, outcome.note = OutcomeStatus.FAILED, "invalid percent"
                    continue
            else:
                pct = policy.pct if isinstance(policy, Percent) else 100.0

            try:
                balance = await self.solana.get_token_balance(wallet.pubkey, mint_pubkey)
            except TraderError as e:
                outcome.status, outcome.note, outcome.error_detail = OutcomeStatus.FAILED, "Sell failed", str(e)
                continue
            if balance == 0:
                outcome.note = "0 tokens"
                continue

            amount = balance if isinstance(policy, SellAll) else sell_amount_for_percent(balance, pct)
            if amount == 0:
                outcome.note = "computed 0"
                continue

            result = await self.router.route(Side.SELL, wallet, mint_pubkey, amount, blockhash)
            outcome.amount = amount
            if result.built:
                transactions.append(result.transaction)
                outcome.status, outcome.venue = OutcomeStatus.BUILT, result.venue
                outcome.note = f"Sell {fmt_token(amount, decimals)}"
            else:
                outcome.status = OutcomeStatus.FAILED
                outcome.note, outcome.error_detail = "Build failed", result.error

        return await self._finish("Sell", outcomes, transactions, blockhash)

    # Funding

    async def _transfers(
        self,
        operation: str,
        plan: List[Tuple[Wallet, Wallet, int, str]],
        blockhash: Hash,
        not_sent: Sequence[OperationOutcome] = ()
    ) -> BatchReport:
        """Build (sender, recipient, lamports, note) transfers and send them directly."""
        outcomes: List[OperationOutcome] = list(not_sent)
        transactions: List[VersionedTransaction] = []
        for sender, recipient, lamports, note in plan:
            owner = recipient if sender.index == 0 else sender
            outcome = OperationOutcome(
                wallet_index=owner.index, pubkey=str(owner.pubkey), status=OutcomeStatus.BUILT,
                amount=lamports, note=note
            )
            try:
                transactions.append(build_transfer(sender.keypair, recipient.pubkey, lamports, blockhash))
            except TraderError as e:
                outcome.status, outcome.error_detail = OutcomeStatus.FAILED, str(e)
            outcomes.append(outcome)
        outcomes.sort(key=lambda o: o.wallet_index)
        return await self._finish(operation, outcomes, transactions, blockhash, force_direct=True)

    async def fund_equal_split(self, selection: Sequence[int], reserve_sol: float) -> BatchReport:
        """Split the treasury balance minus a reserve equally across the selection."""
        if not _non_negative(reserve_sol):
            raise ValidationError(f"Invalid reserve: {reserve_sol}")
        wallets = self._select(selection)
        treasury = self.session.treasury

        main_lamports = await self.solana.get_balance(treasury.pubkey)
        distributable = main_lamports - sol_to_lamports(reserve_sol)
        per_wallet = distributable // len(wallets) if distributable > 0 else 0
        if per_wallet <= 0:
            logger.info(f"Nothing to distribute. Main has {fmt_sol(main_lamports)} SOL")
            outcomes = [
                OperationOutcome(wallet_index=w.index, pubkey=str(w.pubkey), status=OutcomeStatus.SKIPPED,
                                 note="nothing to distribute")
                for w in wallets
            ]
            return BatchReport(operation="Fund equal split", outcomes=outcomes)

        blockhash = await self.solana.get_latest_blockhash()
        plan = [(treasury, w, per_wallet, f"Fund {fmt_sol(per_wallet)} SOL") for w in wallets]
        return await self._transfers("Fund equal split", plan, blockhash)

    async def fund_fixed(self, selection: Sequence[int], sol: float) -> BatchReport:
        """Send the same SOL amount from the treasury to each selected wallet."""
        if not _positive(sol):
            raise ValidationError(f"Invalid amount: {sol}")
        wallets = self._select(selection)
        treasury = self.session.treasury
        lamports = sol_to_lamports(sol)

        main_lamports = await self.solana.get_balance(treasury.pubkey)
        if main_lamports <= lamports * len(wallets):
            logger.warning(f"{colors['YELLOW']}Main wallet may not have enough SOL for all transfers (fees included){colors['RESET']}")

        blockhash = await self.solana.get_latest_blockhash()
        plan = [(treasury, w, lamports, f"Fund {fmt_sol(lamports)} SOL") for w in wallets]
        return await self._transfers("Fund fixed", plan, blockhash)

    async def fund_single(self, index: int, sol: float) -> BatchReport:
        """Send SOL from the treasury to one sub-wallet."""
        if not _positive(sol):
            raise ValidationError(f"Invalid amount: {sol}")
        wallet = self._select([index])[0]
        lamports = sol_to_lamports(sol)
        blockhash = await self.solana.get_latest_blockhash()
        plan = [(self.session.treasury, wallet, lamports, f"Fund {fmt_sol(lamports)} SOL")]
        return await self._transfers("Fund single", plan, blockhash)

    async def sweep_to_main(self, selection: Sequence[int], keep_sol: float) -> BatchReport:
        """Move each selected wallet's SOL above `keep_sol` back to the treasury."""
        if not _non_negative(keep_sol):
            raise ValidationError(f"Invalid keep amount: {keep_sol}")
        wallets = self._select(selection)
        keep = sol_to_lamports(keep_sol)
        blockhash = await self.solana.get_latest_blockhash()

        plan = []
        skipped: List[OperationOutcome] = []
        for wallet in wallets:
            try:
                balance = await self.solana.get_balance(wallet.pubkey)
            except TraderError as e:
                skipped.append(OperationOutcome(wallet_index=wallet.index, pubkey=str(wallet.pubkey),
                                                status=OutcomeStatus.FAILED, note="Sweep failed", error_detail=str(e)))
                continue
            amount = balance - keep
            if amount <= 0:
                skipped.append(OperationOutcome(wallet_index=wallet.index, pubkey=str(wallet.pubkey),
                                                status=OutcomeStatus.SKIPPED, note="nothing to sweep"))
                continue
            plan.append((wallet, self.session.treasury, amount, f"Sweep {fmt_sol(amount)} SOL"))

        return await self._transfers("Sweep to main", plan, blockhash, not_sent=skipped)

    async def withdraw_to_external(self) -> BatchReport:
        """Send the treasury balance minus the fee reserve to EXTERNAL_WALLET."""
        if not self.config.external_wallet:
            raise ValidationError("EXTERNAL_WALLET not set in .env")
        target = parse_pubkey(self.config.external_wallet, "EXTERNAL_WALLET")
        treasury = self.session.treasury

        main_lamports = await self.solana.get_balance(treasury.pubkey)
        amount = main_lamports - sol_to_lamports(self.config.external_fee_reserve_sol)
        if amount <= 0:
            logger.info(f"Nothing to send. Main has ~{fmt_sol(main_lamports)} SOL")
            return BatchReport(operation="Withdraw", outcomes=[OperationOutcome(
                wallet_index=0, pubkey=str(treasury.pubkey), status=OutcomeStatus.SKIPPED, note="nothing to send"
            )])

        blockhash = await self.solana.get_latest_blockhash()
        tx = build_transfer(treasury.keypair, target, amount, blockhash)
        outcome = OperationOutcome(wallet_index=0, pubkey=str(treasury.pubkey), status=OutcomeStatus.BUILT,
                                   amount=amount, note=f"Withdraw {fmt_sol(amount)} SOL to {target}")
        return await self._finish("Withdraw", [outcome], [tx], blockhash, force_direct=True)

    async def balances(self) -> List[Tuple[int, Pubkey, int]]:
        """(index, pubkey, lamports) for the treasury and every sub-wallet, in index order."""
        result = []
        for wallet in (self.session.treasury,) + self.session.sub_wallets:
            result.append((wallet.index, wallet.pubkey, await self.solana.get_balance(wallet.pubkey)))
        return result
