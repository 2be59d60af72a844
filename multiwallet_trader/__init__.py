"""
Multi-wallet trader: derived wallets, dual-venue swaps, bundled submission.
"""
