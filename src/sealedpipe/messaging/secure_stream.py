"""
Secure Stream Module

Seals every message with XSalsa20-Poly1305 under the session's shared key
and a fresh random nonce, and frames it on the underlying byte stream.

Frame Format:
    [length (8, big-endian) | nonce (24) | tag (16) | ciphertext]

The length covers everything after itself. The tag and ciphertext are the
NaCl secretbox output, so the Poly1305 tag comes first.

Security features:
- Authenticated encryption (XSalsa20-Poly1305)
- Fresh CSPRNG nonce per message, never a counter
- Size limits enforced before encrypting and before reading a payload
- Authentication failures are surfaced, never retried
- A reader that loses its place in the stream refuses further reads
"""

import logging
import struct
from typing import Optional

from nacl.exceptions import CryptoError
from nacl.secret import SecretBox

from ..config import DEFAULT_MAX_MESSAGE_SIZE
from ..core_crypto.nonce import NONCE_SIZE, Nonce
from ..errors import (
    BufferTooSmallError,
    DecryptionFailedError,
    FrameSyncError,
    MessageTooLargeError,
    ShortReadError,
    ShortWriteError,
)
from ..transport.streams import DuplexStream, read_exactly, write_all


logger = logging.getLogger(__name__)

# Constants
KEY_SIZE = SecretBox.KEY_SIZE     # 32 bytes
TAG_SIZE = SecretBox.MACBYTES     # 16 bytes (Poly1305)
HEADER_SIZE = 8
LENGTH_HEADER = struct.Struct(">Q")   # big-endian unsigned 64-bit length
OVERHEAD = NONCE_SIZE + TAG_SIZE


def max_frame_length(max_message_size: int) -> int:
    """Largest length header accepted for a given plaintext limit."""
    return max_message_size + OVERHEAD


class XSalsa20Poly1305Cipher:
    """
    Seal/open sealed payloads (nonce || box) under one shared key.
    """

    def __init__(self, key: bytes):
        """
        Initialize with the shared key.

        Args:
            key: 256-bit (32-byte) key
        """
        if len(key) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes")
        self._box = SecretBox(bytes(key))

    def seal(self, plaintext: bytes, nonce: Optional[Nonce] = None) -> bytes:
        """
        Encrypt and authenticate plaintext.

        Args:
            plaintext: Data to encrypt
            nonce: Nonce to use; a fresh random one if None

        Returns:
            nonce (24) + tag (16) + ciphertext
        """
        if nonce is None:
            nonce = Nonce.generate()
        box = self._box.encrypt(bytes(plaintext), bytes(nonce)).ciphertext
        sealed = bytearray(NONCE_SIZE + len(box))
        offset = nonce.write_into(sealed)
        sealed[offset:] = box
        return bytes(sealed)

    def open(self, sealed: bytes) -> bytes:
        """
        Authenticate and decrypt a sealed payload.

        Raises:
            DecryptionFailedError: If the payload is truncated, tampered with,
                or sealed under another key
        """
        if len(sealed) < OVERHEAD:
            raise DecryptionFailedError("decryption failed")
        nonce = Nonce.from_buffer(sealed)
        try:
            return self._box.decrypt(bytes(sealed[NONCE_SIZE:]), bytes(nonce))
        except CryptoError as exc:
            raise DecryptionFailedError("decryption failed") from exc


class SecureWriter:
    """Seal and frame messages onto a stream."""

    def __init__(self, stream: DuplexStream, shared_key: bytes,
                 max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE):
        self._stream = stream
        self._cipher = XSalsa20Poly1305Cipher(shared_key)
        self._max_message_size = max_message_size

    @property
    def max_message_size(self) -> int:
        return self._max_message_size

    def write(self, data: bytes) -> int:
        """
        Seal `data` and write it as one frame.

        Args:
            data: Plaintext, at most max_message_size bytes

        Returns:
            Bytes written to the stream (header + sealed payload)

        Raises:
            MessageTooLargeError: If data is over the limit; nothing is written
            ShortWriteError: If the stream stops accepting bytes; `written`
                tells how much went out
        """
        size = len(data)
        if size > self._max_message_size:
            raise MessageTooLargeError(size, self._max_message_size)

        sealed = self._cipher.seal(data)
        header = LENGTH_HEADER.pack(len(sealed))

        # A short header write propagates as-is; the payload is not sent.
        write_all(self._stream, header)
        try:
            write_all(self._stream, sealed)
        except ShortWriteError as exc:
            raise ShortWriteError(HEADER_SIZE + len(sealed),
                                  HEADER_SIZE + exc.written) from exc

        logger.debug("Wrote frame: %d byte message, %d bytes on the wire",
                     size, HEADER_SIZE + len(sealed))
        return HEADER_SIZE + len(sealed)


class SecureReader:
    """Read frames from a stream and open them."""

    def __init__(self, stream: DuplexStream, shared_key: bytes,
                 max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE):
        self._stream = stream
        self._cipher = XSalsa20Poly1305Cipher(shared_key)
        self._max_message_size = max_message_size
        self._pending: Optional[bytes] = None
        self._broken: Optional[Exception] = None

    @property
    def max_message_size(self) -> int:
        return self._max_message_size

    def read(self) -> bytes:
        """
        Read and decrypt the next message.

        Returns:
            The plaintext of one frame

        Raises:
            ShortReadError: If the stream closes mid-frame (or before one)
            MessageTooLargeError: If the length header is over the limit;
                the payload is left unread
            DecryptionFailedError: If the frame fails authentication; the
                frame was consumed, so the next read starts on a boundary
            FrameSyncError: If an earlier oversized header or mid-frame EOF
                left the reader out of step with the stream
        """
        if self._pending is not None:
            data, self._pending = self._pending, None
            return data
        if self._broken is not None:
            raise FrameSyncError(
                f"stream out of sync after earlier error: {self._broken}"
            ) from self._broken

        try:
            header = read_exactly(self._stream, HEADER_SIZE)
        except ShortReadError as exc:
            # EOF exactly between frames leaves the stream in step
            if exc.partial:
                self._broken = exc
            raise
        (length,) = LENGTH_HEADER.unpack(header)

        limit = max_frame_length(self._max_message_size)
        if length > limit:
            # the payload stays unread, so the next header position is lost
            self._broken = MessageTooLargeError(length, limit)
            raise self._broken

        try:
            sealed = read_exactly(self._stream, length)
        except ShortReadError as exc:
            self._broken = exc
            raise
        plaintext = self._cipher.open(sealed)
        logger.debug("Read frame: %d bytes on the wire, %d byte message",
                     HEADER_SIZE + length, len(plaintext))
        return plaintext

    def readinto(self, buffer) -> int:
        """
        Read the next message into `buffer`.

        Returns:
            Number of plaintext bytes copied

        Raises:
            BufferTooSmallError: If the message does not fit. The message is
                kept, and the next call with a large enough buffer returns it.
        """
        data = self.read()
        if len(data) > len(buffer):
            self._pending = data
            raise BufferTooSmallError(len(data), len(buffer))
        buffer[:len(data)] = data
        return len(data)
