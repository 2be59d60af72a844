#!/usr/bin/env python3
"""
Simple launcher script for the multi-wallet trader shell.
"""
import argparse
import asyncio
import sys
from pathlib import Path

from multiwallet_trader.main import main

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Solana Multi-Wallet Trader')
    parser.add_argument(
        '--env-file',
        type=Path,
        default=None,
        help='Path to .env (default: repository root)'
    )
    parser.add_argument(
        '--log-level',
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Override LOG_LEVEL from .env'
    )

    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(main(env_file=args.env_file, log_level=args.log_level)))
    except KeyboardInterrupt:
        print("\nTrader stopped by user")
        sys.exit(0)
