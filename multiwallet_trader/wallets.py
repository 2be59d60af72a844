"""
Deterministic wallet derivation and the trading session that owns the wallet set.
"""
import logging
from dataclasses import dataclass, replace
from typing import Tuple

from mnemonic import Mnemonic
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .config import MAX_SUB_WALLETS, TradingConfig
from .errors import ConfigError, ValidationError

logger = logging.getLogger(__name__)

TREASURY_INDEX = 0
DERIVATION_PATH_TEMPLATE = "m/44'/501'/{index}'/0'"

_wordlist = Mnemonic("english")


def derive_keypair(seed_phrase: str, index: int) -> Keypair:
    """
    Derive the keypair for a wallet slot.

    Same phrase and index always give the same key, so funds can be
    recovered without any wallet file.

    Args:
        seed_phrase: BIP39 mnemonic (english wordlist)
        index: Wallet slot, 0 is the treasury

    Returns:
        Keypair at m/44'/501'/{index}'/0'

    Raises:
        ConfigError: If the phrase is absent or fails checksum validation
        ValidationError: If index is negative
    """
    if not seed_phrase or not seed_phrase.strip():
        raise ConfigError("Seed phrase is not set")
    if index < 0:
        raise ValidationError(f"Wallet index must be >= 0, got {index}")

    phrase = " ".join(seed_phrase.split())
    if not _wordlist.check(phrase):
        raise ConfigError("Seed phrase is malformed (unknown words or bad checksum)")

    seed = Mnemonic.to_seed(phrase, passphrase="")
    return Keypair.from_seed_and_derivation_path(seed, DERIVATION_PATH_TEMPLATE.format(index=index))


@dataclass(frozen=True)
class Wallet:
    """A derived wallet held only in memory."""
    index: int
    keypair: Keypair

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    @property
    def label(self) -> str:
        return "Main" if self.index == TREASURY_INDEX else f"Sub#{self.index}"

    def __repr__(self) -> str:
        return f"Wallet({self.label} {self.pubkey})"


def derive_wallet(seed_phrase: str, index: int) -> Wallet:
    """Derive a Wallet for a slot (see derive_keypair)."""
    return Wallet(index=index, keypair=derive_keypair(seed_phrase, index))


@dataclass(frozen=True)
class TradingSession:
    """
    Snapshot of configuration and the active wallet set.

    Changing the sub-wallet count returns a new session; operations keep
    using the snapshot they started with.
    """
    config: TradingConfig
    treasury: Wallet
    sub_wallets: Tuple[Wallet, ...]

    @classmethod
    def create(cls, config: TradingConfig) -> "TradingSession":
        treasury = derive_wallet(config.mnemonic, TREASURY_INDEX)
        subs = tuple(derive_wallet(config.mnemonic, i) for i in range(1, config.num_sub_wallets + 1))
        logger.info(f"Derived treasury {treasury.pubkey} and {len(subs)} sub-wallet(s)")
        return cls(config=config, treasury=treasury, sub_wallets=subs)

    @property
    def sub_wallet_count(self) -> int:
        return len(self.sub_wallets)

    def with_sub_wallet_count(self, count: int) -> "TradingSession":
        """
        Build a new session with `count` sub-wallets.

        Raises:
            ValidationError: If count is outside 1..20
        """
        if not 1 <= count <= MAX_SUB_WALLETS:
            raise ValidationError(f"Sub-wallet count must be between 1 and {MAX_SUB_WALLETS}, got {count}")
        config = replace(self.config, num_sub_wallets=count)
        # Reuse already-derived wallets, derive only the new slots
        subs = self.sub_wallets[:count] + tuple(
            derive_wallet(config.mnemonic, i) for i in range(len(self.sub_wallets) + 1, count + 1)
        )
        return TradingSession(config=config, treasury=self.treasury, sub_wallets=subs)

    def wallet(self, index: int) -> Wallet:
        """
        Get a wallet by index (0 = treasury).

        Raises:
            ValidationError: If index is outside 0..sub_wallet_count
        """
        if index == TREASURY_INDEX:
            return self.treasury
        if not 1 <= index <= self.sub_wallet_count:
            raise ValidationError(f"Invalid wallet index {index} (1-{self.sub_wallet_count})")
        return self.sub_wallets[index - 1]
