import logging
import os
import signal
import socket
import threading

import pytest

from rollouts_demo import __main__ as cli


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_usage_error():
    with pytest.raises(SystemExit) as exc_info:
        cli.run(['-listen-addr', 'invalid'])
    assert exc_info.value.code == 2


def test_listen_error(capsys):
    with socket.socket() as sock:
        sock.bind(('127.0.0.1', 0))
        sock.listen()
        port = sock.getsockname()[1]

        assert cli.run(['-listen-addr', f'127.0.0.1:{port}']) == 1

    assert f'Could not listen on 127.0.0.1:{port}' in capsys.readouterr().out


def test_graceful_stop(capsys):
    timer = threading.Timer(0.3, os.kill, (os.getpid(), signal.SIGTERM))
    timer.start()
    try:
        status = cli.run(['-listen-addr', '127.0.0.1:0', '-termination-delay', '0'])
    finally:
        timer.cancel()

    out = capsys.readouterr().out
    assert status == 0
    assert 'Started server on 127.0.0.1:0' in out
    assert 'Signal SIGTERM caught. Shutting down in 0s' in out
    assert 'Server stopped' in out
