"""
Nonce handling for sealed records.

A nonce is 24 random bytes, drawn fresh from the CSPRNG for every message.
Uniqueness under a given key is what matters, not secrecy: reusing a nonce
with XSalsa20 lets an observer XOR two ciphertexts and recover plaintext.
Nonces are never derived from counters or clocks, so nothing has to survive
a restart.
"""

import secrets
from typing import Union

from ..errors import RandomSourceError, ShortBufferError


NONCE_SIZE = 24   # 192 bits, XSalsa20

Buffer = Union[bytes, bytearray, memoryview]


class Nonce:
    """Fixed-size, single-use value combined with the key for each message."""

    __slots__ = ('_value',)

    def __init__(self, value: bytes):
        if len(value) != NONCE_SIZE:
            raise ValueError(f"Nonce must be {NONCE_SIZE} bytes, got {len(value)}")
        self._value = bytes(value)

    @classmethod
    def generate(cls) -> 'Nonce':
        """
        Generate a random nonce.

        Raises:
            RandomSourceError: If the operating system cannot supply randomness
        """
        try:
            value = secrets.token_bytes(NONCE_SIZE)
        except (OSError, NotImplementedError) as exc:
            raise RandomSourceError(f"failed to create nonce: {exc}") from exc
        return cls(value)

    @classmethod
    def from_buffer(cls, buffer: Buffer) -> 'Nonce':
        """
        Copy the first NONCE_SIZE bytes of `buffer` into a Nonce.

        Raises:
            ShortBufferError: If the buffer holds fewer than NONCE_SIZE bytes
        """
        if len(buffer) < NONCE_SIZE:
            raise ShortBufferError(NONCE_SIZE, len(buffer))
        return cls(bytes(buffer[:NONCE_SIZE]))

    def write_into(self, buffer: Union[bytearray, memoryview], offset: int = 0) -> int:
        """
        Copy the nonce into `buffer` at `offset`.

        Returns:
            NONCE_SIZE

        Raises:
            ShortBufferError: If fewer than NONCE_SIZE bytes fit
        """
        available = max(len(buffer) - offset, 0)
        if available < NONCE_SIZE:
            raise ShortBufferError(NONCE_SIZE, available)
        buffer[offset:offset + NONCE_SIZE] = self._value
        return NONCE_SIZE

    def __bytes__(self) -> bytes:
        return self._value

    def __len__(self) -> int:
        return NONCE_SIZE

    def __eq__(self, other) -> bool:
        if isinstance(other, Nonce):
            return secrets.compare_digest(self._value, other._value)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __repr__(self) -> str:
        return f"Nonce({self._value.hex()})"


def new_nonce() -> Nonce:
    """Shorthand for Nonce.generate()."""
    return Nonce.generate()


def parse_nonce(buffer: Buffer) -> Nonce:
    """Shorthand for Nonce.from_buffer()."""
    return Nonce.from_buffer(buffer)
