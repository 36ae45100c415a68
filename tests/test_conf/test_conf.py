import logging
import sys

import pytest

from rollouts_demo import conf
from rollouts_demo.__main__ import make_parser
from rollouts_demo.core import exceptions


@pytest.mark.parametrize('addr, expected', [
    (':8080', ('', 8080)),
    ('127.0.0.1:80', ('127.0.0.1', 80)),
    ('localhost:0', ('localhost', 0)),
    ('[::1]:9000', ('::1', 9000)),
    ('[::]:8080', ('::', 8080)),
])
def test_parse_listen_addr(addr, expected):
    assert conf.parse_listen_addr(addr) == expected


@pytest.mark.parametrize('addr', ['8080', 'localhost', ':http', ':70000', '::1:80', ':-1'])
def test_parse_listen_addr_invalid(addr):
    with pytest.raises(exceptions.ImproperlyConfigured):
        conf.parse_listen_addr(addr)


def test_default_settings():
    settings = conf.Settings.from_args(make_parser().parse_args([]))
    assert settings == conf.Settings(
        listen_addr=':8080',
        termination_delay=10,
        color='purple',
        root='.',
        log_level='info',
    )
    assert settings.host == ''
    assert settings.port == 8080


@pytest.mark.parametrize('argv', [
    ['-listen-addr', '127.0.0.1:9090', '-termination-delay', '3', '-color', 'blue'],
    ['--listen-addr', '127.0.0.1:9090', '--termination-delay', '3', '--color', 'blue'],
    ['-listen-addr=127.0.0.1:9090', '-termination-delay=3', '-color=blue'],
])
def test_settings_from_flags(argv):
    settings = conf.Settings.from_args(make_parser().parse_args(argv))
    assert settings.host == '127.0.0.1'
    assert settings.port == 9090
    assert settings.termination_delay == 3
    assert settings.color == 'blue'


@pytest.mark.parametrize('argv', [
    ['-listen-addr', 'nope'],
    ['-termination-delay', '-1'],
    ['-color', ''],
])
def test_settings_invalid(argv):
    with pytest.raises(exceptions.ImproperlyConfigured):
        conf.Settings.from_args(make_parser().parse_args(argv))


def test_settings_are_immutable():
    settings = conf.Settings()
    with pytest.raises(AttributeError):
        settings.color = 'red'


def test_setup_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    try:
        conf.setup_logging('WARNING')
        assert root.level == logging.WARNING
        [handler] = root.handlers
        assert handler.stream is sys.stdout
        assert handler.formatter._fmt == conf.LOG_FORMAT
    finally:
        root.handlers[:] = handlers
        root.setLevel(level)
