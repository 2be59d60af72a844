#!/usr/bin/env python3
"""
Print the treasury and sub-wallet addresses derived from MNEMONIC.

Use it to recover funds: the same seed phrase always gives the same
addresses. Private keys are printed only with --show-secrets.
"""
import argparse
import sys

import base58

from multiwallet_trader.config import MAX_SUB_WALLETS, load_config
from multiwallet_trader.errors import ConfigError
from multiwallet_trader.wallets import derive_wallet

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Show wallets derived from MNEMONIC')
    parser.add_argument('--count', type=int, default=None, help=f'Sub-wallets to show (1-{MAX_SUB_WALLETS})')
    parser.add_argument('--show-secrets', action='store_true', help='Also print base58 private keys')
    args = parser.parse_args()

    try:
        config = load_config()
        count = args.count if args.count is not None else config.num_sub_wallets
        if not 1 <= count <= MAX_SUB_WALLETS:
            raise ConfigError(f"--count must be between 1 and {MAX_SUB_WALLETS}")
        wallets = [derive_wallet(config.mnemonic, i) for i in range(count + 1)]
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("=" * 60)
    print("DERIVED WALLETS (m/44'/501'/i'/0')")
    print("=" * 60)
    for wallet in wallets:
        print(f"{wallet.label:<7} {wallet.pubkey}")
        if args.show_secrets:
            print(f"        {base58.b58encode(bytes(wallet.keypair)).decode('utf-8')}")
    print("=" * 60)
    if args.show_secrets:
        print("⚠️  NEVER publish these private keys!")
