"""
Token transfer indexer for the Solana ledger.

Tracks transfers of one SPL token mint in realtime through a log
subscription, recovers gaps with a paced backfill scan and persists every
transfer exactly once.
"""

__version__ = "0.1.0"
