import argparse
import logging
import sys
from typing import NamedTuple

from rollouts_demo.core import exceptions
from rollouts_demo.core.constants import (
    DEFAULT_COLOR,
    DEFAULT_LISTEN_ADDR,
    DEFAULT_TERMINATION_DELAY,
)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_LEVELS = ('debug', 'info', 'warning', 'error')


class Settings(NamedTuple):
    """Process-wide configuration, set once at startup."""
    listen_addr: str = DEFAULT_LISTEN_ADDR
    termination_delay: int = DEFAULT_TERMINATION_DELAY
    color: str = DEFAULT_COLOR
    root: str = '.'
    log_level: str = 'info'

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> 'Settings':
        """Create validated settings from parsed command line arguments"""
        settings = cls(
            listen_addr=args.listen_addr,
            termination_delay=args.termination_delay,
            color=args.color,
            root=args.root,
            log_level=args.log_level,
        )
        # validation
        parse_listen_addr(settings.listen_addr)
        if settings.termination_delay < 0:
            raise exceptions.ImproperlyConfigured(
                f"termination delay must not be negative: {settings.termination_delay}"
            )
        if not settings.color:
            raise exceptions.ImproperlyConfigured("color must not be empty")

        return settings

    @property
    def host(self) -> str:
        return parse_listen_addr(self.listen_addr)[0]

    @property
    def port(self) -> int:
        return parse_listen_addr(self.listen_addr)[1]


def parse_listen_addr(addr: str) -> tuple[str, int]:
    """Split a listen address into host and port.

    ``:8080`` -> ('', 8080), ``127.0.0.1:80`` -> ('127.0.0.1', 80),
    ``[::1]:80`` -> ('::1', 80). An empty host means all interfaces.
    """
    host, sep, port_str = addr.rpartition(':')
    if not sep:
        raise exceptions.ImproperlyConfigured(f"missing port in address {addr!r}")

    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    elif ':' in host:
        raise exceptions.ImproperlyConfigured(f"too many colons in address {addr!r}")

    try:
        port = int(port_str)
    except ValueError:
        raise exceptions.ImproperlyConfigured(f"invalid port in address {addr!r}") from None

    if not 0 <= port <= 65535:
        raise exceptions.ImproperlyConfigured(f"invalid port in address {addr!r}")

    return host, port


def setup_logging(level: str = 'INFO') -> None:
    """Configure the root logger to write to stdout"""
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(console_handler)
