import asyncio
import enum
import signal
from logging import getLogger
from typing import Optional

from rollouts_demo.core.constants import SHUTDOWN_TIMEOUT
from rollouts_demo.core.server import Server

logger = getLogger('rollouts_demo.signals')

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class State(enum.Enum):
    """Shutdown sequence states"""
    RUNNING = 'running'
    SIGNALED = 'signaled'
    DRAINING = 'draining'
    SHUTTING_DOWN = 'shutting down'
    STOPPED = 'stopped'


class ShutdownCoordinator:
    """Graceful shutdown on termination signals.

    The first signal disables keep-alive and starts the termination delay,
    which gives load balancers time to stop routing traffic here. The
    server keeps accepting connections during the delay. When the delay
    elapses, or a second signal arrives, the server is shut down with a
    bounded timeout.
    """

    def __init__(
        self,
        server: Server,
        termination_delay: float,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT,
    ) -> None:
        self._server = server
        self._termination_delay = termination_delay
        self._shutdown_timeout = shutdown_timeout
        self._signals: asyncio.Queue[signal.Signals] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self.state = State.RUNNING
        self.done = asyncio.Event()

    def install(self) -> None:
        """Register the termination signal handlers on the running loop."""
        loop = asyncio.get_running_loop()
        for sig in TERMINATION_SIGNALS:
            loop.add_signal_handler(sig, self.notify, sig)

    def uninstall(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in TERMINATION_SIGNALS:
            loop.remove_signal_handler(sig)

    def notify(self, sig: signal.Signals) -> None:
        """Deliver a termination signal to the coordinator."""
        self._signals.put_nowait(sig)

    def start(self) -> asyncio.Task:
        """Start the background task waiting for signals."""
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name='shutdown-coordinator')
        return self._task

    async def wait(self) -> None:
        """Wait for the shutdown sequence to finish.

        Re-raise ShutdownTimeoutError if the server did not drain in time.
        """
        await self.start()

    async def run(self) -> None:
        sig = await self._signals.get()
        self.state = State.SIGNALED
        self._server.set_keep_alives_enabled(False)
        logger.info(f'Signal {sig.name} caught. Shutting down in {self._termination_delay}s')

        self.state = State.DRAINING
        delay = asyncio.create_task(asyncio.sleep(self._termination_delay))
        second = asyncio.create_task(self._signals.get())
        try:
            await asyncio.wait((delay, second), return_when=asyncio.FIRST_COMPLETED)
        finally:
            delay.cancel()
            second.cancel()

        if second.done() and not second.cancelled():
            logger.warning('Second signal caught. Shutting down NOW')

        self.state = State.SHUTTING_DOWN
        await self._server.shutdown(self._shutdown_timeout)

        self.state = State.STOPPED
        self.done.set()
