"""
Exception taxonomy for sealedpipe.

Every error raised by the handshake, the nonce helpers and the secure stream
codec derives from SealedPipeError, so callers can catch the whole family at
once. Transport errors additionally derive from the matching builtin
(EOFError / OSError) so generic I/O handling keeps working.
"""


class SealedPipeError(Exception):
    """Base class for all sealedpipe errors."""
    pass


class KeyGenerationError(SealedPipeError):
    """Raised when a key pair cannot be generated."""
    pass


class RandomSourceError(SealedPipeError):
    """Raised when the CSPRNG cannot provide bytes."""
    pass


class HandshakeError(SealedPipeError):
    """Raised when the public-key exchange fails."""
    pass


class MessageTooLargeError(SealedPipeError):
    """Raised when a message or frame exceeds the configured maximum."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"message too large: {size} bytes, max {limit}")
        self.size = size
        self.limit = limit


class DecryptionFailedError(SealedPipeError):
    """Raised when a sealed payload fails authentication."""
    pass


class ShortBufferError(SealedPipeError):
    """Raised when a buffer holds fewer bytes than an operation needs."""

    def __init__(self, needed: int, available: int):
        super().__init__(f"buffer too short: need {needed} bytes, have {available}")
        self.needed = needed
        self.available = available


class BufferTooSmallError(ShortBufferError):
    """Raised when a read buffer cannot hold the decrypted message."""
    pass


class ShortReadError(SealedPipeError, EOFError):
    """Raised when a stream reaches EOF before the expected byte count."""

    def __init__(self, expected: int, partial: bytes):
        super().__init__(
            f"stream closed after {len(partial)} of {expected} bytes"
        )
        self.expected = expected
        self.partial = partial


class ShortWriteError(SealedPipeError, OSError):
    """Raised when a stream stops accepting bytes mid-write."""

    def __init__(self, expected: int, written: int):
        super().__init__(f"wrote {written} of {expected} bytes")
        self.expected = expected
        self.written = written


class FrameSyncError(SealedPipeError):
    """Raised by a reader that lost its place in the stream after an earlier error."""
    pass
