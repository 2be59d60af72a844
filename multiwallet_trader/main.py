"""
Interactive shell for the multi-wallet trader.

Prompts for fully-resolved parameters and calls the engine; no trading
logic lives here.
"""
import asyncio
import logging
import math
import sys
from pathlib import Path
from typing import Callable, Dict, Optional

from .bonding_curve import BondingCurveVenue
from .config import MAX_SUB_WALLETS, load_config
from .errors import ConfigError, TraderError
from .jito_client import JitoClient
from .jupiter_client import JupiterClient
from .orchestrator import (
    BatchOrchestrator,
    BatchReport,
    FixedAmount,
    MaxMinusBuffer,
    PerWallet,
    Percent,
    SellAll,
    parse_pubkey,
)
from .router import Router
from .solana_client import SolanaClient
from .submission import SubmissionPipeline
from .utils import fmt_sol, fmt_token, get_terminal_colors, parse_selection
from .wallets import TradingSession

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

MENU = """
Choose action:
A) Set number of sub-wallets (1-20)
B) Show balances
C) FUND - Equal split from MAIN
D) FUND - Fixed amount per SELECTED wallets
E) FUND - Single wallet transfer
F) FUND - Sweep back to MAIN
G) SELL - Percentage by wallet (auto Pump/Jup)
H) BUY  - ALL wallets (auto Pump/Jup)
I) BUY  - SELECTED wallets (auto Pump/Jup)
J) MAIN -> external
K) SELL - ALL wallets (100%) (auto Pump/Jup)
Q) Exit"""


def setup_logging(level: str = "INFO"):
    """Log to stdout and multiwallet_trader.log."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler('multiwallet_trader.log')
        ],
        force=True
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _to_float(raw: str) -> Optional[float]:
    try:
        value = float(raw.strip())
    except ValueError:
        return None
    return value if math.isfinite(value) else None


class TraderShell:
    """Menu loop over one TradingSession; the session is swapped on option A."""

    def __init__(
        self,
        session: TradingSession,
        solana: SolanaClient,
        router: Router,
        pipeline: SubmissionPipeline,
        input_func: Callable[[str], str] = input
    ):
        self.session = session
        self.solana = solana
        self.router = router
        self.pipeline = pipeline
        self.input_func = input_func
        self.actions: Dict[str, Callable] = {
            "A": self.set_wallet_count,
            "B": self.show_balances,
            "C": self.fund_equal_split,
            "D": self.fund_fixed,
            "E": self.fund_single,
            "F": self.sweep_to_main,
            "G": self.sell_percent,
            "H": self.buy_all,
            "I": self.buy_selected,
            "J": self.withdraw_to_external,
            "K": self.sell_all,
        }

    async def ask(self, prompt: str) -> str:
        # input() blocks, keep it off the event loop
        return (await asyncio.to_thread(self.input_func, prompt)).strip()

    def orchestrator(self) -> BatchOrchestrator:
        return BatchOrchestrator(self.session, self.solana, self.router, self.pipeline)

    async def run(self):
        print(f"Main: {colors['CYAN']}{self.session.treasury.pubkey}{colors['RESET']}")
        print(f"Using {self.session.sub_wallet_count} sub-wallet(s).")
        while True:
            print(MENU)
            choice = (await self.ask("> ")).upper()
            if choice == "Q":
                return
            action = self.actions.get(choice)
            if action is None:
                print("Unknown option")
                continue
            try:
                await action()
            except TraderError as e:
                logger.error(f"{colors['RED']}Error: {e}{colors['RESET']}")

    async def _ask_selection(self, prompt: str):
        selected = parse_selection(await self.ask(prompt), self.session.sub_wallet_count)
        if not selected:
            print("No wallets selected.")
        return selected

    async def _ask_mint(self) -> str:
        mint = await self.ask("Mint address: ")
        parse_pubkey(mint, "mint address")
        return mint

    @staticmethod
    def print_report(report: BatchReport):
        if report.identifiers:
            print(f"\n{report.path.value} ids:")
            for identifier in report.identifiers:
                print(f"  {colors['CYAN']}{identifier}{colors['RESET']}")
        print(f"\n{report.operation} summary:")
        for line in report.summary_lines():
            print(line)

    # Wallet set

    async def set_wallet_count(self):
        raw = await self.ask(f"How many sub-wallets to use? (1-{MAX_SUB_WALLETS}) [current {self.session.sub_wallet_count}]: ")
        try:
            count = int(raw)
        except ValueError:
            print("Invalid number.")
            return
        self.session = self.session.with_sub_wallet_count(count)
        print(f"OK. Using {count} sub-wallet(s).")

    async def show_balances(self):
        print("\nBalances:")
        for index, pubkey, lamports in await self.orchestrator().balances():
            label = "Main" if index == 0 else f"Sub#{index}"
            print(f"{label} {pubkey} → {colors['GREEN']}{fmt_sol(lamports)}{colors['RESET']} SOL")

    # Funding

    async def fund_equal_split(self):
        selected = await self._ask_selection("Select wallets to fund (all or 1-5,8,10): ")
        if not selected:
            return
        reserve = _to_float(await self.ask("Reserve to keep on MAIN (e.g., 0.10): "))
        if reserve is None or reserve < 0:
            print("Invalid reserve.")
            return
        self.print_report(await self.orchestrator().fund_equal_split(selected, reserve))

    async def fund_fixed(self):
        selected = await self._ask_selection("Select wallets to fund (all or 1-5,8,10): ")
        if not selected:
            return
        amount = _to_float(await self.ask("Fixed SOL amount per wallet (e.g., 0.02): "))
        if amount is None or amount <= 0:
            print("Invalid amount.")
            return
        self.print_report(await self.orchestrator().fund_fixed(selected, amount))

    async def fund_single(self):
        raw = await self.ask(f"Which wallet index? (1-{self.session.sub_wallet_count}): ")
        try:
            index = int(raw)
        except ValueError:
            print("Invalid wallet index.")
            return
        amount = _to_float(await self.ask("SOL amount to send (e.g., 1 or 0.23): "))
        if amount is None or amount <= 0:
            print("Invalid amount.")
            return
        self.print_report(await self.orchestrator().fund_single(index, amount))

    async def sweep_to_main(self):
        selected = await self._ask_selection("Select wallets to sweep back (all or 1-5,8,10): ")
        if not selected:
            return
        keep = _to_float(await self.ask("Keep how much SOL on each sub before sweeping? (e.g., 0.003): "))
        if keep is None or keep < 0:
            print("Invalid keep amount.")
            return
        self.print_report(await self.orchestrator().sweep_to_main(selected, keep))

    async def withdraw_to_external(self):
        self.print_report(await self.orchestrator().withdraw_to_external())

    # Trading

    async def buy_all(self):
        mint = await self._ask_mint()
        mode = (await self.ask("Spend 'fixed' SOL per wallet or 'max' (all minus fee buffer)? (fixed/max): ")).lower()
        if mode == "max":
            policy = MaxMinusBuffer()
        elif mode == "fixed":
            amount = _to_float(await self.ask("SOL amount per wallet (e.g., 0.01): "))
            if amount is None or amount <= 0:
                print("Invalid amount.")
                return
            policy = FixedAmount(amount)
        else:
            print("Unknown choice.")
            return
        selected = list(range(1, self.session.sub_wallet_count + 1))
        self.print_report(await self.orchestrator().buy(mint, selected, policy))

    async def buy_selected(self):
        mint = await self._ask_mint()
        selected = await self._ask_selection("Select wallets (e.g., all or 1-5,8,10 or single index): ")
        if not selected:
            return
        if (await self.ask("Apply SAME SOL amount to all selected? (y/n): ")).lower().startswith("y"):
            amount = _to_float(await self.ask("SOL amount per wallet (e.g., 0.01): "))
            if amount is None or amount <= 0:
                print("Invalid amount.")
                return
            policy = FixedAmount(amount)
        else:
            fee_buffer = self.session.config.fee_buffer_sol
            amounts = {}
            for index in selected:
                wallet = self.session.wallet(index)
                raw = await self.ask(
                    f"Wallet #{index} {wallet.pubkey} - SOL to spend (0=skip, 'max' to spend all minus {fee_buffer}): "
                )
                amounts[index] = raw if raw.lower() == "max" else (_to_float(raw) if raw else 0)
            policy = PerWallet(amounts)
        self.print_report(await self.orchestrator().buy(mint, selected, policy))

    async def sell_percent(self):
        mint = await self._ask_mint()
        selected = await self._ask_selection("Select wallets (all or 1-5,8,10 or single index): ")
        if not selected:
            return
        if (await self.ask("Apply SAME percent to all selected? (y/n): ")).lower().startswith("y"):
            pct = _to_float(await self.ask("Percent to sell (1-100): "))
            if pct is None or not 0 < pct <= 100:
                print("Invalid percent.")
                return
            policy = Percent(pct)
        else:
            mint_pubkey = parse_pubkey(mint, "mint address")
            decimals = await self.solana.get_mint_decimals(mint_pubkey)
            amounts = {}
            for index in selected:
                wallet = self.session.wallet(index)
                balance = await self.solana.get_token_balance(wallet.pubkey, mint_pubkey)
                if balance == 0:
                    continue
                raw = await self.ask(
                    f"Wallet #{index} {wallet.pubkey} balance {fmt_token(balance, decimals)} - percent to sell (1-100, 0=skip): "
                )
                amounts[index] = _to_float(raw) if raw else 0
            policy = PerWallet(amounts)
        self.print_report(await self.orchestrator().sell(mint, selected, policy))

    async def sell_all(self):
        mint = await self._ask_mint()
        selected = list(range(1, self.session.sub_wallet_count + 1))
        self.print_report(await self.orchestrator().sell(mint, selected, SellAll()))


async def main(env_file: Optional[Path] = None, log_level: Optional[str] = None) -> int:
    """
    Load configuration, derive wallets and run the shell.

    Returns:
        Process exit status (1 when the seed phrase or config is unusable)
    """
    try:
        config = load_config(env_file=env_file)
    except ConfigError as e:
        setup_logging(log_level or "INFO")
        logger.error(f"Configuration error: {e}")
        return 1

    setup_logging(log_level or config.log_level)
    logger.info("Starting multi-wallet trader")
    logger.info(repr(config))

    try:
        session = TradingSession.create(config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    solana = SolanaClient(config.rpc_url, config.fallback_rpc_url)
    jupiter = JupiterClient(config.jupiter_api_url, api_key=config.jupiter_api_key)
    jito = JitoClient(config.jito_host)

    router = Router(
        BondingCurveVenue(solana, config.slippage_bps),
        jupiter,
        config.slippage_bps,
        curve_first=config.use_pumpfun_first
    )
    pipeline = SubmissionPipeline(
        solana,
        jito,
        session.treasury.keypair,
        tip_lamports=config.tip_lamports,
        send_txs_per_sec=config.send_txs_per_sec,
        force_rpc=config.force_rpc
    )

    shell = TraderShell(session, solana, router, pipeline)
    try:
        await shell.run()
    finally:
        await jupiter.close()
        await jito.close()
        await solana.close()
    return 0
