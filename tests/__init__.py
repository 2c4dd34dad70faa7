# sealedpipe Test Suite
"""
Test suite including:
- Unit tests (keys, nonces, framing, streams, config)
- Integration tests (handshake + echo over pipes and TCP)
- Security tests (tampering, wrong keys, size limits)

Run with: pytest
"""
