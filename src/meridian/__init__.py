"""
Meridian - Identity & Ledger Gateway.

Self-sovereign identity, a personal data vault with scoped access grants,
and a wallet/contract client for the dataset license marketplace.
"""

__version__ = "0.1.0"
