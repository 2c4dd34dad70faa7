"""
sealedpipe - command line entry point.

    Server:  sealedpipe -l 4000
    Client:  sealedpipe 4000 "hello world"

The server echoes every message back over the secure channel; the client
sends one message, prints the echo and exits.
"""

import argparse
import logging
import sys
from typing import List, Optional

from .config import TransportConfig
from .errors import SealedPipeError
from .messaging.session import dial, serve
from .transport.streams import listen


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger("sealedpipe")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="sealedpipe",
        description="Encrypted echo server and client.",
    )
    p.add_argument("-l", "--listen", type=int, metavar="PORT",
                   help="listen mode: serve on PORT")
    p.add_argument("--host", help="address to bind or dial (default from config)")
    p.add_argument("--max-message-size", type=int,
                   help="largest message in bytes")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    p.add_argument("port", nargs="?", help="client mode: server port")
    p.add_argument("message", nargs="?", help="client mode: message to send")
    return p.parse_args(argv)


def build_config(args: argparse.Namespace) -> TransportConfig:
    """Environment settings, overridden by command line flags."""
    config = TransportConfig.from_env()
    changes = {}
    if args.host:
        changes['host'] = args.host
    if args.max_message_size is not None:
        changes['max_message_size'] = args.max_message_size
    return config.with_overrides(**changes) if changes else config


def run_server(config: TransportConfig, port: int) -> int:
    listener = listen((config.host, port))
    logger.info("Serving on %s:%d", *listener.getsockname()[:2])
    serve(listener, config)
    return 0


def run_client(config: TransportConfig, port: str, message: str) -> int:
    with dial(f"{config.host}:{port}", config) as channel:
        channel.write(message.encode("utf-8"))
        echo = channel.read()
    print(echo.decode("utf-8", errors="replace"))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Dispatch into server or client mode."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
    )

    try:
        config = build_config(args)
    except ValueError as exc:
        logger.error("%s", exc)
        return 2

    try:
        if args.listen:
            return run_server(config, args.listen)
        if args.port is None or args.message is None:
            logger.error("Usage: sealedpipe PORT MESSAGE  |  sealedpipe -l PORT")
            return 2
        return run_client(config, args.port, args.message)
    except KeyboardInterrupt:
        return 130
    except (SealedPipeError, OSError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
