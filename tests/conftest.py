"""
Pytest configuration and fixtures for multi-wallet trader tests.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from multiwallet_trader.config import TradingConfig
from multiwallet_trader.wallets import TradingSession, Wallet

TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)


def _make_unsigned_swap(payer: Pubkey, blockhash: Hash = Hash.default()) -> VersionedTransaction:
    ix = transfer(TransferParams(from_pubkey=payer, to_pubkey=Keypair().pubkey(), lamports=1))
    message = MessageV0.try_compile(payer, [ix], [], blockhash)
    return VersionedTransaction.populate(message, [Signature.default()])


@pytest.fixture
def make_unsigned_swap():
    """Factory for unsigned single-signer transactions, shaped like an aggregator swap."""
    return _make_unsigned_swap


@pytest.fixture
def test_mnemonic():
    """Standard BIP39 test vector phrase."""
    return TEST_MNEMONIC


@pytest.fixture
def trading_config():
    """TradingConfig with three sub-wallets and defaults otherwise."""
    return TradingConfig(mnemonic=TEST_MNEMONIC, num_sub_wallets=3)


@pytest.fixture
def session(trading_config):
    """TradingSession derived from the test phrase."""
    return TradingSession.create(trading_config)


@pytest.fixture
def mock_keypair():
    """Create a mock keypair for testing."""
    return Keypair()


@pytest.fixture
def wallet(mock_keypair):
    """Sub-wallet #1 backed by a random keypair."""
    return Wallet(index=1, keypair=mock_keypair)


@pytest.fixture
def blockhash():
    """Batch blockhash."""
    return Hash.default()


@pytest.fixture
def mock_jupiter_client():
    """Create a mock JupiterClient for testing."""
    client = AsyncMock()
    return client


@pytest.fixture
def mock_solana_client():
    """Create a mock SolanaClient for testing."""
    client = AsyncMock()
    return client


@pytest.fixture
def mock_jito_client():
    """Create a mock JitoClient for testing."""
    client = AsyncMock()
    client.send_bundle = AsyncMock(side_effect=lambda txs: f"bundle-{len(txs)}")
    return client


@pytest.fixture
def sol_mint():
    """SOL mint address."""
    return "So11111111111111111111111111111111111111112"


@pytest.fixture
def usdc_mint():
    """USDC mint address."""
    return "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@pytest.fixture
def token_mint():
    """A pump-style token mint."""
    return Pubkey.from_string("DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263")


@pytest.fixture
def fake_txs():
    """Opaque stand-ins for signed transactions."""
    return [MagicMock(name=f"tx{i}") for i in range(10)]
