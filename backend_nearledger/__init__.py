"""
Backend NearLedger: balance-history reconstruction for NEAR accounts.

Rebuilds the balance-changing transaction history of an account from
point-in-time state queries, verifies continuity between recorded snapshots,
fills gaps and synthesizes staking reward entries.
"""

__version__ = "0.1.0"
