"""
Tests for wallets.py
"""
import pytest
from multiwallet_trader.errors import ConfigError, ValidationError
from multiwallet_trader.wallets import TradingSession, derive_keypair, derive_wallet


class TestDeriveKeypair:
    """Tests for deterministic derivation."""

    def test_same_input_same_key(self, test_mnemonic):
        assert derive_keypair(test_mnemonic, 3).pubkey() == derive_keypair(test_mnemonic, 3).pubkey()

    def test_distinct_indices_distinct_keys(self, test_mnemonic):
        pubkeys = {derive_keypair(test_mnemonic, i).pubkey() for i in range(6)}
        assert len(pubkeys) == 6

    def test_standard_vector_address(self, test_mnemonic):
        # Same address other Solana wallets derive for this phrase
        assert str(derive_keypair(test_mnemonic, 0).pubkey()) == "HAgk14JpMQLgt6rVgv7cBQFJWFto5Dqxi472uT3DKpqk"

    def test_whitespace_in_phrase_ignored(self, test_mnemonic):
        messy = "  " + test_mnemonic.replace(" ", "   ") + "\n"
        assert derive_keypair(messy, 0).pubkey() == derive_keypair(test_mnemonic, 0).pubkey()

    def test_empty_phrase(self):
        with pytest.raises(ConfigError):
            derive_keypair("   ", 0)

    def test_bad_checksum(self):
        phrase = " ".join(["abandon"] * 12)
        with pytest.raises(ConfigError):
            derive_keypair(phrase, 0)

    def test_unknown_word(self, test_mnemonic):
        with pytest.raises(ConfigError):
            derive_keypair(test_mnemonic.replace("about", "zzzz"), 0)

    def test_negative_index(self, test_mnemonic):
        with pytest.raises(ValidationError):
            derive_keypair(test_mnemonic, -1)


class TestWallet:

    def test_labels(self, test_mnemonic):
        assert derive_wallet(test_mnemonic, 0).label == "Main"
        assert derive_wallet(test_mnemonic, 7).label == "Sub#7"

    def test_repr_has_no_secret(self, test_mnemonic):
        wallet = derive_wallet(test_mnemonic, 1)
        assert str(wallet.pubkey) in repr(wallet)


class TestTradingSession:
    """Tests for the session snapshot."""

    def test_create(self, session, test_mnemonic):
        assert session.sub_wallet_count == 3
        assert session.treasury.index == 0
        assert [w.index for w in session.sub_wallets] == [1, 2, 3]
        assert session.sub_wallets[1].pubkey == derive_keypair(test_mnemonic, 2).pubkey()

    def test_with_sub_wallet_count_grows(self, session, test_mnemonic):
        bigger = session.with_sub_wallet_count(5)

        assert bigger.sub_wallet_count == 5
        assert bigger.config.num_sub_wallets == 5
        assert bigger.sub_wallets[:3] == session.sub_wallets
        assert bigger.sub_wallets[4].pubkey == derive_keypair(test_mnemonic, 5).pubkey()
        # Original snapshot untouched
        assert session.sub_wallet_count == 3

    def test_with_sub_wallet_count_shrinks(self, session):
        smaller = session.with_sub_wallet_count(1)
        assert smaller.sub_wallets == session.sub_wallets[:1]

    @pytest.mark.parametrize("count", [0, 21, -3])
    def test_with_sub_wallet_count_out_of_range(self, session, count):
        with pytest.raises(ValidationError):
            session.with_sub_wallet_count(count)

    def test_wallet_lookup(self, session):
        assert session.wallet(0) is session.treasury
        assert session.wallet(2) is session.sub_wallets[1]
        with pytest.raises(ValidationError):
            session.wallet(4)
