"""
Configuration loading from .env and the process environment.
"""
import logging
import math
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

import dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)

MAX_SUB_WALLETS = 20


@dataclass(frozen=True)
class TradingConfig:
    """Resolved trading configuration.

    SOL-denominated settings are kept as floats the way the operator enters
    them; they are floored to lamports where they are spent.
    """
    mnemonic: str
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    fallback_rpc_url: Optional[str] = None
    jito_host: str = "ny.mainnet.block-engine.jito.wtf"
    jupiter_api_url: str = "https://quote-api.jup.ag/v6"
    jupiter_api_key: Optional[str] = None
    num_sub_wallets: int = MAX_SUB_WALLETS
    slippage_bps: int = 100
    tip_lamports: int = 0
    fee_buffer_sol: float = 0.003
    min_spend_sol: float = 0.0005
    send_txs_per_sec: float = 1.0
    use_pumpfun_first: bool = True
    force_rpc: bool = False
    external_wallet: str = ""
    external_fee_reserve_sol: float = 0.0005
    log_level: str = "INFO"

    def __repr__(self) -> str:
        # Never print the seed phrase
        return (
            f"TradingConfig(rpc_url={self.rpc_url!r}, jito_host={self.jito_host!r}, "
            f"num_sub_wallets={self.num_sub_wallets}, slippage_bps={self.slippage_bps}, "
            f"tip_lamports={self.tip_lamports}, send_txs_per_sec={self.send_txs_per_sec}, "
            f"use_pumpfun_first={self.use_pumpfun_first}, force_rpc={self.force_rpc})"
        )


def normalize_jito_host(raw: str) -> str:
    """Strip scheme and path from a block-engine URL: 'https://ny.x/api' -> 'ny.x'."""
    host = re.sub(r"^https?://", "", raw.strip())
    return re.sub(r"/.*$", "", host)


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")
    if not math.isfinite(value):
        raise ConfigError(f"{key} must be a finite number, got {raw!r}")
    return value


def _get_flag(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip() == "1"


def load_config(
    env: Optional[Mapping[str, str]] = None,
    env_file: Optional[Path] = None
) -> TradingConfig:
    """
    Load configuration.

    Args:
        env: Explicit key/value mapping (tests). If None, .env is loaded into
            the process environment first and os.environ is used.
        env_file: Path to the .env file (defaults to the repository root)

    Returns:
        TradingConfig

    Raises:
        ConfigError: If MNEMONIC is missing or a value is malformed/out of range
    """
    if env is None:
        env_path = env_file or Path(__file__).parent.parent / '.env'
        if env_path.exists():
            dotenv.load_dotenv(env_path)
        else:
            logger.warning(f".env file not found at {env_path}")
        env = os.environ

    mnemonic = (env.get('MNEMONIC') or "").strip()
    if not mnemonic:
        raise ConfigError("MNEMONIC not set in .env")

    num_sub_wallets = _get_int(env, 'NUM_SUB_WALLETS', MAX_SUB_WALLETS)
    if not 1 <= num_sub_wallets <= MAX_SUB_WALLETS:
        raise ConfigError(f"NUM_SUB_WALLETS must be between 1 and {MAX_SUB_WALLETS}, got {num_sub_wallets}")

    slippage_bps = _get_int(env, 'SLIPPAGE_BPS', 100)
    if not 0 <= slippage_bps <= 10_000:
        raise ConfigError(f"SLIPPAGE_BPS must be between 0 and 10000, got {slippage_bps}")

    tip_lamports = _get_int(env, 'TIP_LAMPORTS', 0)
    if tip_lamports < 0:
        raise ConfigError(f"TIP_LAMPORTS must be >= 0, got {tip_lamports}")

    fee_buffer_sol = _get_float(env, 'FEE_BUFFER_SOL', 0.003)
    min_spend_sol = _get_float(env, 'MIN_SPEND_SOL', 0.0005)
    external_fee_reserve_sol = _get_float(env, 'EXTERNAL_FEE_RESERVE_SOL', 0.0005)
    for key, value in (
        ('FEE_BUFFER_SOL', fee_buffer_sol),
        ('MIN_SPEND_SOL', min_spend_sol),
        ('EXTERNAL_FEE_RESERVE_SOL', external_fee_reserve_sol),
    ):
        if value < 0:
            raise ConfigError(f"{key} must be >= 0, got {value}")

    # At least one submission per second
    send_txs_per_sec = max(1.0, _get_float(env, 'SEND_TXS_PER_SEC', 1.0))

    jupiter_api_url = (env.get('JUPITER_API_URL') or "https://quote-api.jup.ag/v6").rstrip('/')

    return TradingConfig(
        mnemonic=mnemonic,
        rpc_url=env.get('RPC_URL') or "https://api.mainnet-beta.solana.com",
        fallback_rpc_url=env.get('FALLBACK_RPC_URL') or None,
        jito_host=normalize_jito_host(env.get('JITO_URL') or "ny.mainnet.block-engine.jito.wtf"),
        jupiter_api_url=jupiter_api_url,
        jupiter_api_key=env.get('JUPITER_API_KEY') or None,
        num_sub_wallets=num_sub_wallets,
        slippage_bps=slippage_bps,
        tip_lamports=tip_lamports,
        fee_buffer_sol=fee_buffer_sol,
        min_spend_sol=min_spend_sol,
        send_txs_per_sec=send_txs_per_sec,
        use_pumpfun_first=_get_flag(env, 'USE_PUMPFUN_FIRST', True),
        force_rpc=_get_flag(env, 'FORCE_RPC', False),
        external_wallet=(env.get('EXTERNAL_WALLET') or "").strip(),
        external_fee_reserve_sol=external_fee_reserve_sol,
        log_level=(env.get('LOG_LEVEL') or "INFO").upper()
    )
