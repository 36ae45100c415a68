from typing import Any, Awaitable, MutableMapping, Callable, Protocol, runtime_checkable

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
Headers = list[tuple[bytes, bytes]]


@runtime_checkable
class Application(Protocol):
    """An ASGI 3.0 application protocol"""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Dispatch the incoming request"""

