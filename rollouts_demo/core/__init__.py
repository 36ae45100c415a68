from . import exceptions
from .server import Server
from .signals import ShutdownCoordinator

__all__ = (
    'exceptions',
    'Server',
    'ShutdownCoordinator',
)
