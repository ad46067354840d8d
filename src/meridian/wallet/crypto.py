"""
Wallet Crypto - Key material and at-rest encryption.

Industry-standard security:
- Ed25519 identity keys for decentralized identifiers
- Argon2id key derivation (memory-hard)
- AES-256-GCM authenticated encryption

Secrets written by EncryptedFileStore never exist unencrypted on disk.
"""

import base64
import json
import os
import secrets
from dataclasses import dataclass
from pathlib import Path

# Cryptography
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from argon2.low_level import hash_secret_raw, Type


# ============================================
# Security Constants
# ============================================

# Argon2id parameters (OWASP recommendations for high-security)
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MB
ARGON2_PARALLELISM = 4
ARGON2_HASH_LEN = 32  # 256 bits for AES-256

# AES-GCM constants
AES_IV_SIZE = 12  # 96 bits (recommended for GCM)
SALT_SIZE = 16

# Secure file permissions (Unix only)
SECURE_FILE_MODE = 0o600  # Owner read/write only

# z-base-32 alphabet used by did:dht identifiers
ZBASE32_ALPHABET = "ybndrfg8ejkmcpqxot1uwisza345h769"


def set_secure_permissions(filepath: Path) -> None:
    """
    Set restrictive file permissions on Unix systems.

    Sets file to mode 0600 (owner read/write only).
    No-op on Windows (NTFS uses ACLs, not Unix permissions).
    """
    if os.name == 'posix':
        try:
            os.chmod(filepath, SECURE_FILE_MODE)
        except OSError:
            # Best effort - don't fail save operation if chmod fails
            pass


# ============================================
# Key Derivation / Encryption
# ============================================

def derive_key(password: str, salt: bytes,
               time_cost: int = ARGON2_TIME_COST,
               memory_cost: int = ARGON2_MEMORY_COST) -> bytes:
    """Derive an AES-256 key from a password using Argon2id."""
    return hash_secret_raw(
        secret=password.encode('utf-8'),
        salt=salt,
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=ARGON2_PARALLELISM,
        hash_len=ARGON2_HASH_LEN,
        type=Type.ID
    )


def encrypt_bytes(plaintext: bytes, key: bytes) -> tuple[bytes, bytes]:
    """
    Encrypt with AES-256-GCM.

    Returns: (iv, ciphertext_and_tag)
    """
    iv = secrets.token_bytes(AES_IV_SIZE)
    return iv, AESGCM(key).encrypt(iv, plaintext, None)


def decrypt_bytes(iv: bytes, ciphertext_and_tag: bytes, key: bytes) -> bytes:
    """
    Decrypt AES-256-GCM data.

    Raises: InvalidTag if key is wrong or data is tampered.
    """
    return AESGCM(key).decrypt(iv, ciphertext_and_tag, None)


# ============================================
# Encoding helpers
# ============================================

def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def zbase32_encode(data: bytes) -> str:
    """Encode bytes with the z-base-32 alphabet (no padding)."""
    bits = 0
    value = 0
    out = []
    for byte in data:
        value = (value << 8) | byte
        bits += 8
        while bits >= 5:
            bits -= 5
            out.append(ZBASE32_ALPHABET[(value >> bits) & 0x1F])
    if bits:
        out.append(ZBASE32_ALPHABET[(value << (5 - bits)) & 0x1F])
    return "".join(out)


def canonical_json(data) -> bytes:
    """Deterministic JSON bytes for signing."""
    return json.dumps(data, separators=(',', ':'), sort_keys=True).encode('utf-8')


# ============================================
# Identity Keys
# ============================================

@dataclass
class IdentityKey:
    """An Ed25519 key pair backing a live decentralized identifier."""
    private_key: Ed25519PrivateKey

    @classmethod
    def generate(cls) -> "IdentityKey":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_hex(cls, private_hex: str) -> "IdentityKey":
        return cls(Ed25519PrivateKey.from_private_bytes(bytes.fromhex(private_hex)))

    def to_hex(self) -> str:
        raw = self.private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return raw.hex()

    @property
    def public_bytes(self) -> bytes:
        return self.private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    @property
    def did_suffix(self) -> str:
        return zbase32_encode(self.public_bytes)

    @property
    def did(self) -> str:
        return f"did:dht:{self.did_suffix}"

    @property
    def public_jwk(self) -> dict:
        return {"kty": "OKP", "crv": "Ed25519", "x": b64url_encode(self.public_bytes)}

    def sign(self, message: bytes) -> bytes:
        return self.private_key.sign(message)

    def sign_json(self, data) -> str:
        """Sign canonical JSON, returning a base64url signature."""
        return b64url_encode(self.sign(canonical_json(data)))


def verify_signature(public_bytes: bytes, signature: bytes, message: bytes) -> bool:
    """Verify an Ed25519 signature."""
    try:
        Ed25519PublicKey.from_public_bytes(public_bytes).verify(signature, message)
        return True
    except InvalidSignature:
        return False
