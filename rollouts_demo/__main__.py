import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from rollouts_demo import conf
from rollouts_demo.app import create_app
from rollouts_demo.core import exceptions
from rollouts_demo.core.constants import (
    DEFAULT_COLOR,
    DEFAULT_LISTEN_ADDR,
    DEFAULT_TERMINATION_DELAY,
)
from rollouts_demo.core.server import Server
from rollouts_demo.core.signals import ShutdownCoordinator

logger = logging.getLogger('rollouts_demo')


async def main(settings: conf.Settings) -> None:
    """Serve until a termination signal completes the shutdown sequence.

    :param settings: process configuration
    """
    app = create_app(color=settings.color, root=settings.root)
    server = Server(settings.host, settings.port, app)
    coordinator = ShutdownCoordinator(server, settings.termination_delay)

    await server.start()
    coordinator.install()
    coordinator.start()

    logger.info(f'Started server on {settings.listen_addr}')
    await server.serve()
    await coordinator.wait()
    logger.info('Server stopped')


def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='rollouts-demo',
        description='Demo HTTP service reporting a color, for rollout testing.',
        allow_abbrev=False,
    )
    parser.add_argument('-listen-addr', '--listen-addr', dest='listen_addr',
                        default=DEFAULT_LISTEN_ADDR, type=str,
                        help='server listen address')
    parser.add_argument('-termination-delay', '--termination-delay', dest='termination_delay',
                        default=DEFAULT_TERMINATION_DELAY, type=int,
                        help='termination delay in seconds')
    parser.add_argument('-color', '--color', dest='color',
                        default=DEFAULT_COLOR, type=str,
                        help='color reported by this instance')
    parser.add_argument('-root', '--root', dest='root',
                        default='.', type=str,
                        help='directory of the static files')
    parser.add_argument('-log-level', '--log-level', dest='log_level',
                        default='info', choices=conf.LOG_LEVELS,
                        type=str, help='logging level')
    return parser


def run(argv: Optional[Sequence[str]] = None) -> int:
    """Command line entry point. Return the process exit status."""
    parser = make_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    try:
        settings = conf.Settings.from_args(args)
    except exceptions.ImproperlyConfigured as exc:
        parser.error(str(exc))

    conf.setup_logging(settings.log_level.upper())

    try:
        asyncio.run(main(settings))
    except exceptions.ListenError as exc:
        logger.critical(f'Could not listen on {settings.listen_addr}: {exc}')
        return 1
    except exceptions.ShutdownTimeoutError as exc:
        logger.critical(f'Could not gracefully shutdown the server: {exc}')
        return 1
    except KeyboardInterrupt:
        logger.warning('Interrupted before the signal handlers were installed')
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(run())
