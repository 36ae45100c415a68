import asyncio
import logging
import os
import signal

import pytest

from rollouts_demo.app import create_app
from rollouts_demo.core import exceptions
from rollouts_demo.core.server import Server
from rollouts_demo.core.signals import ShutdownCoordinator, State


def coordinate(scenario, termination_delay=0.3, shutdown_timeout=5):
    """Run ``scenario(server, coordinator, connect)`` with a started coordinator."""

    async def _run():
        server = Server('127.0.0.1', 0, create_app(color='purple'))
        await server.start()
        coordinator = ShutdownCoordinator(server, termination_delay, shutdown_timeout)
        coordinator.start()

        async def connect():
            return await asyncio.open_connection(*server.address)

        try:
            return await scenario(server, coordinator, connect)
        finally:
            await server.shutdown(timeout=5)

    return asyncio.run(_run())


def test_running_until_signaled():
    async def scenario(server, coordinator, connect):
        await asyncio.sleep(0.05)
        assert coordinator.state is State.RUNNING
        assert server.keep_alives_enabled
        assert not coordinator.done.is_set()

    coordinate(scenario)


def test_accepts_connections_during_delay(http, caplog):
    caplog.set_level(logging.INFO, logger='rollouts_demo.signals')

    async def scenario(server, coordinator, connect):
        loop = asyncio.get_running_loop()
        started = loop.time()
        coordinator.notify(signal.SIGTERM)
        await asyncio.sleep(0.1)

        assert coordinator.state is State.DRAINING
        assert not server.keep_alives_enabled

        reader, writer = await connect()
        response = await http.send_request(reader, writer, path='/color')

        await asyncio.wait_for(coordinator.wait(), 2)
        return response, loop.time() - started, coordinator.state

    response, elapsed, state = coordinate(scenario)
    assert response.status == 200
    assert response.headers['connection'] == 'close'
    assert elapsed >= 0.29
    assert state is State.STOPPED
    assert 'Signal SIGTERM caught. Shutting down in 0.3s' in caplog.messages


def test_second_signal_skips_delay(caplog):
    caplog.set_level(logging.INFO, logger='rollouts_demo.signals')

    async def scenario(server, coordinator, connect):
        coordinator.notify(signal.SIGINT)
        await asyncio.sleep(0.05)
        coordinator.notify(signal.SIGINT)
        await asyncio.wait_for(coordinator.wait(), 1)
        return coordinator

    coordinator = coordinate(scenario, termination_delay=60)
    assert coordinator.state is State.STOPPED
    assert coordinator.done.is_set()
    assert 'Second signal caught. Shutting down NOW' in caplog.messages


def test_listener_closed_after_delay():
    async def scenario(server, coordinator, connect):
        coordinator.notify(signal.SIGTERM)
        await asyncio.wait_for(server.serve(), 1)
        with pytest.raises(OSError):
            await connect()

    coordinate(scenario, termination_delay=0.1)


def test_shutdown_waits_for_active_requests(http):
    async def scenario(server, coordinator, connect):
        reader, writer = await connect()
        pending = asyncio.create_task(http.send_request(
            reader, writer, 'POST', '/color', body=b'[{"color": "purple", "delayLength": 0.3}]',
        ))
        await asyncio.sleep(0.05)
        coordinator.notify(signal.SIGTERM)
        await asyncio.wait_for(coordinator.wait(), 2)
        return await pending

    response = coordinate(scenario, termination_delay=0)
    assert response.status == 200


def test_shutdown_timeout(http):
    async def scenario(server, coordinator, connect):
        reader, writer = await connect()
        pending = asyncio.create_task(http.send_request(
            reader, writer, 'POST', '/color', body=b'[{"color": "purple", "delayLength": 0.5}]',
        ))
        await asyncio.sleep(0.05)
        coordinator.notify(signal.SIGTERM)
        with pytest.raises(exceptions.ShutdownTimeoutError):
            await coordinator.wait()
        assert coordinator.state is State.SHUTTING_DOWN
        assert not coordinator.done.is_set()
        await pending

    coordinate(scenario, termination_delay=0, shutdown_timeout=0.1)


def test_os_signal():
    async def scenario(server, coordinator, connect):
        coordinator.install()
        try:
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.wait_for(coordinator.wait(), 1)
        finally:
            coordinator.uninstall()
        return coordinator.state

    assert coordinate(scenario, termination_delay=0) is State.STOPPED
