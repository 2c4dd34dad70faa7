"""
Key Management and Exchange

Implements the public-key handshake with:
- X25519 key pairs
- X25519 Diffie-Hellman + HKDF-SHA256 shared key derivation
- Two-message public key exchange over a raw duplex stream

Handshake (both roles run the same steps):
    1. write own public key (32 bytes)
    2. read peer public key (32 bytes)

Both sides write first, so neither blocks waiting for the other to speak.
Only public keys cross the wire; the shared key is derived locally.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InternalError
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..config import DEFAULT_HKDF_INFO
from ..errors import HandshakeError, KeyGenerationError
from ..transport.streams import DuplexStream, read_exactly, write_all


logger = logging.getLogger(__name__)

# Constants
KEY_SIZE = 32           # X25519 public/private/shared key size
SHARED_KEY_SIZE = 32    # XSalsa20-Poly1305 key size


@dataclass(frozen=True)
class KeyPair:
    """X25519 key pair container."""
    private_key: X25519PrivateKey
    public_key: X25519PublicKey

    @classmethod
    def generate(cls) -> 'KeyPair':
        """
        Generate a new random X25519 key pair.

        Raises:
            KeyGenerationError: If the random source is unavailable
        """
        try:
            private_key = X25519PrivateKey.generate()
        except (OSError, InternalError) as exc:
            raise KeyGenerationError(f"failed to generate key pair: {exc}") from exc
        return cls(private_key, private_key.public_key())

    @classmethod
    def from_private_bytes(cls, data: bytes) -> 'KeyPair':
        """Rebuild a key pair from a raw 32-byte private key."""
        private_key = X25519PrivateKey.from_private_bytes(bytes(data))
        return cls(private_key, private_key.public_key())

    def public_bytes(self) -> bytes:
        """Get public key as raw 32 bytes."""
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw
        )

    def private_bytes(self) -> bytes:
        """Get private key as raw 32 bytes."""
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption()
        )

    def copy(self) -> 'KeyPair':
        """Independent key pair holding the same key material."""
        return KeyPair.from_private_bytes(self.private_bytes())


def hkdf_derive_key(shared_secret: bytes,
                    salt: bytes = None,
                    info: bytes = DEFAULT_HKDF_INFO,
                    length: int = SHARED_KEY_SIZE) -> bytes:
    """
    Derive a symmetric key from a Diffie-Hellman output using HKDF (RFC 5869).

    Args:
        shared_secret: Input key material
        salt: Optional salt
        info: Context/application info
        length: Output key length in bytes

    Returns:
        Derived key bytes
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        info=info,
    )
    return hkdf.derive(shared_secret)


def derive_shared_key(peer_public: bytes, private: bytes,
                      info: bytes = DEFAULT_HKDF_INFO) -> bytes:
    """
    Compute the shared key for (peer public key, own private key).

    Deterministic and commutative:
        derive_shared_key(pub_a, priv_b) == derive_shared_key(pub_b, priv_a)

    Args:
        peer_public: Peer's raw 32-byte public key
        private: Own raw 32-byte private key
        info: HKDF context; both peers must use the same value

    Returns:
        32-byte shared key

    Raises:
        ValueError: If a key has the wrong size or the peer key is a
            low-order point
    """
    private_key = X25519PrivateKey.from_private_bytes(bytes(private))
    public_key = X25519PublicKey.from_public_bytes(bytes(peer_public))
    shared_secret = private_key.exchange(public_key)
    return hkdf_derive_key(shared_secret, info=info)


def fingerprint(public: bytes) -> str:
    """Short SHA-256 fingerprint of a public key, safe to log."""
    digest = hashlib.sha256(public).hexdigest()
    return ':'.join(digest[i:i+2] for i in range(0, 16, 2))


class KeySet:
    """
    Own key pair plus the peer's public key once the exchange has run.

    A KeySet belongs to exactly one connection. Servers keep one template
    KeySet for the process and hand each connection its own copy().
    """

    def __init__(self, key_pair: KeyPair,
                 peer_public: Optional[bytes] = None,
                 info: bytes = DEFAULT_HKDF_INFO):
        self._key_pair = key_pair
        self._peer_public: Optional[bytes] = None
        self._shared_key: Optional[bytes] = None
        self._info = info
        if peer_public is not None:
            self.attach_peer(peer_public)

    @classmethod
    def generate(cls, info: bytes = DEFAULT_HKDF_INFO) -> 'KeySet':
        """Create a KeySet around a fresh key pair."""
        return cls(KeyPair.generate(), info=info)

    @property
    def key_pair(self) -> KeyPair:
        return self._key_pair

    @property
    def public_bytes(self) -> bytes:
        return self._key_pair.public_bytes()

    @property
    def peer_public(self) -> Optional[bytes]:
        return self._peer_public

    @property
    def info(self) -> bytes:
        return self._info

    def copy(self) -> 'KeySet':
        """Same key material, no peer key."""
        return KeySet(self._key_pair.copy(), info=self._info)

    def attach_peer(self, peer_public: bytes) -> None:
        """
        Record the peer's public key. Allowed once.

        Raises:
            HandshakeError: If a peer key is already attached or the key
                has the wrong size
        """
        if self._peer_public is not None:
            raise HandshakeError("peer public key already attached")
        if len(peer_public) != KEY_SIZE:
            raise HandshakeError(
                f"peer public key must be {KEY_SIZE} bytes, got {len(peer_public)}"
            )
        self._peer_public = bytes(peer_public)

    def exchange(self, stream: DuplexStream,
                 log: Optional[logging.Logger] = None) -> bytes:
        """
        Swap public keys with the peer over `stream`.

        Writes own public key, then reads exactly KEY_SIZE bytes as the
        peer's key.

        Args:
            stream: Raw duplex stream to the peer
            log: Logger for handshake progress (module logger if None)

        Returns:
            The derived shared key

        Raises:
            HandshakeError: On short read/write, stream error, or if the
                exchange already ran
        """
        log = log or logger
        if self._peer_public is not None:
            raise HandshakeError("key exchange already completed")

        own_public = self.public_bytes
        log.debug("Sending public key %s", fingerprint(own_public))
        try:
            write_all(stream, own_public)
        except OSError as exc:
            raise HandshakeError(f"error sending public key: {exc}") from exc

        try:
            peer_public = read_exactly(stream, KEY_SIZE)
        except (OSError, EOFError) as exc:
            raise HandshakeError(f"error receiving public key: {exc}") from exc

        self.attach_peer(peer_public)
        log.debug("Received public key %s", fingerprint(peer_public))
        return self.shared_key()

    def shared_key(self) -> bytes:
        """
        Shared key for this connection, derived on first use.

        Raises:
            HandshakeError: If the peer key is unknown or unusable
        """
        if self._peer_public is None:
            raise HandshakeError("peer public key not known; run exchange() first")
        if self._shared_key is None:
            try:
                self._shared_key = derive_shared_key(
                    self._peer_public, self._key_pair.private_bytes(), self._info
                )
            except ValueError as exc:
                raise HandshakeError(f"cannot derive shared key: {exc}") from exc
        return self._shared_key
