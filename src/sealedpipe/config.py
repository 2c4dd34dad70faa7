"""
Transport configuration.

Settings can be built directly or read from the environment:

    SEALEDPIPE_MAX_MESSAGE_SIZE    largest plaintext per frame (bytes)
    SEALEDPIPE_HANDSHAKE_TIMEOUT   seconds allowed for the key exchange
    SEALEDPIPE_HOST                address the CLI binds / dials
"""

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional


# Constants
DEFAULT_MAX_MESSAGE_SIZE = 32 * 1024   # 32 KiB
DEFAULT_HKDF_INFO = b"sealedpipe-v1"
DEFAULT_HOST = "localhost"

ENV_PREFIX = "SEALEDPIPE_"


@dataclass(frozen=True)
class TransportConfig:
    """Immutable settings shared by readers, writers and sessions."""
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    hkdf_info: bytes = DEFAULT_HKDF_INFO
    handshake_timeout: Optional[float] = None
    host: str = DEFAULT_HOST

    def validate(self) -> 'TransportConfig':
        """Check the settings and return self."""
        if self.max_message_size <= 0:
            raise ValueError(
                f"max_message_size must be positive, got {self.max_message_size}"
            )
        if self.handshake_timeout is not None and self.handshake_timeout <= 0:
            raise ValueError(
                f"handshake_timeout must be positive, got {self.handshake_timeout}"
            )
        return self

    def with_overrides(self, **changes) -> 'TransportConfig':
        """Return a validated copy with some fields replaced."""
        return replace(self, **changes).validate()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'TransportConfig':
        """
        Build a config from SEALEDPIPE_* environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            Validated TransportConfig

        Raises:
            ValueError: If a variable is set but malformed
        """
        env = os.environ if environ is None else environ
        changes = {}

        raw = env.get(ENV_PREFIX + "MAX_MESSAGE_SIZE")
        if raw:
            try:
                changes['max_message_size'] = int(raw)
            except ValueError:
                raise ValueError(f"Invalid {ENV_PREFIX}MAX_MESSAGE_SIZE: {raw!r}") from None

        raw = env.get(ENV_PREFIX + "HANDSHAKE_TIMEOUT")
        if raw:
            try:
                changes['handshake_timeout'] = float(raw)
            except ValueError:
                raise ValueError(f"Invalid {ENV_PREFIX}HANDSHAKE_TIMEOUT: {raw!r}") from None

        raw = env.get(ENV_PREFIX + "HOST")
        if raw:
            changes['host'] = raw

        return cls(**changes).validate()
