"""
Pump.fun bonding-curve venue: curve state decoding, constant-product pricing
and buy/sell instruction encoding.

All reserve math is integer-only.
"""
import hashlib
import logging
import struct
from dataclasses import dataclass
from typing import List, Optional, Tuple

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import VersionedTransaction
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import create_associated_token_account, get_associated_token_address

from .errors import ValidationError, VenueUnavailable
from .solana_client import SolanaClient
from .tx_builder import build_transaction

logger = logging.getLogger(__name__)

PUMP_PROGRAM_ID = Pubkey.from_string("6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")

BUY_DISCRIMINATOR = hashlib.sha256(b"global:buy").digest()[:8]
SELL_DISCRIMINATOR = hashlib.sha256(b"global:sell").digest()[:8]

ACCOUNT_DISCRIMINATOR_SIZE = 8
# virtual_token, virtual_sol, real_token, real_sol, total_supply (u64), complete (bool)
CURVE_LAYOUT = struct.Struct("<QQQQQ?")

BPS_DENOMINATOR = 10_000
U64_MAX = 2 ** 64 - 1

GLOBAL_ACCOUNT, _ = Pubkey.find_program_address([b"global"], PUMP_PROGRAM_ID)
FEE_RECIPIENT, _ = Pubkey.find_program_address([b"fee-recipient"], PUMP_PROGRAM_ID)
EVENT_AUTHORITY, _ = Pubkey.find_program_address([b"event-authority"], PUMP_PROGRAM_ID)


def derive_curve_address(mint: Pubkey) -> Pubkey:
    curve, _ = Pubkey.find_program_address([b"bonding-curve", bytes(mint)], PUMP_PROGRAM_ID)
    return curve


@dataclass(frozen=True)
class BondingCurveState:
    """Read-only snapshot of a token's bonding curve."""
    exists: bool
    complete: bool
    curve_address: Optional[Pubkey] = None
    virtual_token_reserves: int = 0
    virtual_sol_reserves: int = 0
    real_token_reserves: int = 0
    real_sol_reserves: int = 0
    token_total_supply: int = 0


def decode_curve_account(curve_address: Pubkey, data: bytes) -> BondingCurveState:
    """
    Decode a bonding-curve account (8-byte discriminator, then the fixed layout).

    Raises:
        VenueUnavailable: If the data is shorter than the layout
    """
    if len(data) < ACCOUNT_DISCRIMINATOR_SIZE + CURVE_LAYOUT.size:
        raise VenueUnavailable(f"Bonding curve {curve_address} has {len(data)} bytes, expected at least "
                               f"{ACCOUNT_DISCRIMINATOR_SIZE + CURVE_LAYOUT.size}")
    v_tok, v_sol, r_tok, r_sol, supply, complete = CURVE_LAYOUT.unpack_from(data, ACCOUNT_DISCRIMINATOR_SIZE)
    return BondingCurveState(
        exists=True,
        complete=bool(complete),
        curve_address=curve_address,
        virtual_token_reserves=v_tok,
        virtual_sol_reserves=v_sol,
        real_token_reserves=r_tok,
        real_sol_reserves=r_sol,
        token_total_supply=supply
    )


async def fetch_curve(solana: SolanaClient, mint: Pubkey) -> BondingCurveState:
    """Read the curve account for a mint; a missing account gives exists=False."""
    curve_address = derive_curve_address(mint)
    data = await solana.get_account_data(curve_address)
    if data is None:
        return BondingCurveState(exists=False, complete=False)
    return decode_curve_account(curve_address, data)


def require_tradable(state: BondingCurveState) -> BondingCurveState:
    """
    Raises:
        VenueUnavailable: If the curve does not exist or has migrated
    """
    if not state.exists or state.curve_address is None:
        raise VenueUnavailable("Pump: bonding curve account missing")
    if state.complete:
        raise VenueUnavailable(f"Pump: bonding curve {state.curve_address} is complete (migrated)")
    return state


def apply_slippage(expected: int, slippage_bps: int) -> int:
    """min_out = floor(expected * (10000 - bps) / 10000)"""
    if not 0 <= slippage_bps <= BPS_DENOMINATOR:
        raise ValidationError(f"Slippage must be within 0..{BPS_DENOMINATOR} bps, got {slippage_bps}")
    return expected * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def constant_product_out(reserve_in: int, reserve_out: int, amount_in: int) -> int:
    """out = floor(reserve_out * amount_in / (reserve_in + amount_in))"""
    if amount_in < 0:
        raise ValidationError(f"Input amount must be >= 0, got {amount_in}")
    if reserve_in <= 0 or reserve_out <= 0:
        raise VenueUnavailable("Pump: bonding curve has empty reserves")
    return reserve_out * amount_in // (reserve_in + amount_in)


def quote_buy(state: BondingCurveState, sol_in: int, slippage_bps: int) -> Tuple[int, int]:
    """
    Tokens out for a SOL input.

    Returns:
        (expected_tokens, min_tokens_out)
    """
    expected = constant_product_out(state.virtual_sol_reserves, state.virtual_token_reserves, sol_in)
    return expected, apply_slippage(expected, slippage_bps)


def quote_sell(state: BondingCurveState, tokens_in: int, slippage_bps: int) -> Tuple[int, int]:
    """
    SOL out for a token input.

    Returns:
        (expected_sol, min_sol_out)
    """
    expected = constant_product_out(state.virtual_token_reserves, state.virtual_sol_reserves, tokens_in)
    return expected, apply_slippage(expected, slippage_bps)


def _encode_args(discriminator: bytes, amount: int, limit: int) -> bytes:
    for value in (amount, limit):
        if not 0 <= value <= U64_MAX:
            raise ValidationError(f"Instruction argument {value} does not fit in u64")
    return discriminator + struct.pack("<QQ", amount, limit)


def build_buy_instruction(
    payer: Pubkey,
    mint: Pubkey,
    curve_address: Pubkey,
    sol_lamports: int,
    min_tokens_out: int
) -> Instruction:
    """Encode the curve `buy` instruction (amount, min out) against its 12 accounts."""
    associated_curve = get_associated_token_address(curve_address, mint)
    associated_user = get_associated_token_address(payer, mint)
    accounts = [
        AccountMeta(pubkey=GLOBAL_ACCOUNT, is_signer=False, is_writable=True),
        AccountMeta(pubkey=FEE_RECIPIENT, is_signer=False, is_writable=True),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=curve_address, is_signer=False, is_writable=True),
        AccountMeta(pubkey=associated_curve, is_signer=False, is_writable=True),
        AccountMeta(pubkey=associated_user, is_signer=False, is_writable=True),
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=EVENT_AUTHORITY, is_signer=False, is_writable=False),
        AccountMeta(pubkey=PUMP_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(PUMP_PROGRAM_ID, _encode_args(BUY_DISCRIMINATOR, sol_lamports, min_tokens_out), accounts)


def build_sell_instruction(
    payer: Pubkey,
    mint: Pubkey,
    curve_address: Pubkey,
    token_amount: int,
    min_sol_out: int
) -> Instruction:
    """Encode the curve `sell` instruction (amount, min out) against its 11 accounts."""
    associated_curve = get_associated_token_address(curve_address, mint)
    associated_user = get_associated_token_address(payer, mint)
    accounts = [
        AccountMeta(pubkey=GLOBAL_ACCOUNT, is_signer=False, is_writable=True),
        AccountMeta(pubkey=FEE_RECIPIENT, is_signer=False, is_writable=True),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=curve_address, is_signer=False, is_writable=True),
        AccountMeta(pubkey=associated_curve, is_signer=False, is_writable=True),
        AccountMeta(pubkey=associated_user, is_signer=False, is_writable=True),
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=EVENT_AUTHORITY, is_signer=False, is_writable=False),
        AccountMeta(pubkey=PUMP_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(PUMP_PROGRAM_ID, _encode_args(SELL_DISCRIMINATOR, token_amount, min_sol_out), accounts)


class BondingCurveVenue:
    """Builds signed curve swaps for one wallet at a time."""

    def __init__(self, solana: SolanaClient, slippage_bps: int):
        self.solana = solana
        self.slippage_bps = slippage_bps

    async def build_buy(
        self,
        payer: Keypair,
        mint: Pubkey,
        sol_lamports: int,
        blockhash: Hash
    ) -> VersionedTransaction:
        """
        Buy tokens with SOL on the curve.

        Prepends a create-ATA instruction when the payer has no token account.

        Raises:
            VenueUnavailable: Curve missing or complete
        """
        state = require_tradable(await fetch_curve(self.solana, mint))
        expected, min_out = quote_buy(state, sol_lamports, self.slippage_bps)
        logger.debug(f"Curve buy {mint}: in={sol_lamports} expected={expected} min_out={min_out}")

        instructions: List[Instruction] = []
        associated_user = get_associated_token_address(payer.pubkey(), mint)
        if not await self.solana.account_exists(associated_user):
            instructions.append(create_associated_token_account(payer.pubkey(), payer.pubkey(), mint))
        instructions.append(build_buy_instruction(payer.pubkey(), mint, state.curve_address, sol_lamports, min_out))
        return build_transaction(payer, instructions, blockhash)

    async def build_sell(
        self,
        payer: Keypair,
        mint: Pubkey,
        token_amount: int,
        blockhash: Hash
    ) -> VersionedTransaction:
        """
        Sell tokens for SOL on the curve.

        Raises:
            VenueUnavailable: Curve missing or complete
        """
        state = require_tradable(await fetch_curve(self.solana, mint))
        expected, min_out = quote_sell(state, token_amount, self.slippage_bps)
        logger.debug(f"Curve sell {mint}: in={token_amount} expected={expected} min_out={min_out}")
        ix = build_sell_instruction(payer.pubkey(), mint, state.curve_address, token_amount, min_out)
        return build_transaction(payer, [ix], blockhash)
