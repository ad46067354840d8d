"""
Wallet package - Chain wallet access for Meridian.

Contains:
- crypto: identity keys, Argon2id/AES-GCM sealing, encoding helpers
- provider: WalletProvider interface and LocalKeyProvider (eth_account + web3)
- gateway: WalletGateway connection lifecycle and transactions

Submodules are imported directly (meridian.wallet.gateway etc.) because
the model layer depends on crypto.
"""

from .crypto import (
    IdentityKey,
    derive_key,
    encrypt_bytes,
    decrypt_bytes,
    set_secure_permissions,
)

__all__ = [
    "IdentityKey",
    "derive_key",
    "encrypt_bytes",
    "decrypt_bytes",
    "set_secure_permissions",
]
