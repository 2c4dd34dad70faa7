# Core Cryptography Module
"""
Key material and per-message values:
- X25519 key pairs and the public key exchange
- HKDF-SHA256 shared key derivation
- 24-byte random nonces
"""

from .keys import (
    KEY_SIZE,
    KeyPair,
    KeySet,
    derive_shared_key,
    hkdf_derive_key,
    fingerprint,
)
from .nonce import NONCE_SIZE, Nonce, new_nonce, parse_nonce

__all__ = [
    'KEY_SIZE',
    'NONCE_SIZE',
    'KeyPair',
    'KeySet',
    'Nonce',
    'derive_shared_key',
    'hkdf_derive_key',
    'fingerprint',
    'new_nonce',
    'parse_nonce',
]
