import asyncio
import logging
from asyncio import StreamReader, StreamWriter
from email.utils import formatdate
from http import HTTPStatus
from logging import getLogger
from typing import Callable, Optional

from rollouts_demo.core import exceptions
from rollouts_demo.core.constants import (
    CHUNKED,
    CLOSE,
    CONNECTION,
    CONTENT_LENGTH,
    DATE,
    EMPTY_BYTES,
    HTTP_1_1,
    KEEP_ALIVE,
    MAX_LINE_SIZE,
    NEWLINE_BYTES,
    SHUTDOWN_TIMEOUT,
    TRANSFER_ENCODING,
)
from rollouts_demo.core.request import Request, read_request, get_header
from rollouts_demo.core.types import Application, Headers, Message


def status_line(status: int) -> bytes:
    """Return the HTTP/1.1 status line for a status code"""
    try:
        reason = HTTPStatus(status).phrase
    except ValueError:
        reason = ''
    return b'HTTP/1.1 %d %s\r\n' % (status, reason.encode())


class _Connection:
    """A client connection tracked by the server for graceful shutdown."""

    def __init__(self, writer: StreamWriter) -> None:
        self.writer = writer
        self.idle = True

    def close(self) -> None:
        self.writer.close()


class _ResponseWriter:
    """Write ASGI response messages to the transport.

    The head is written with the first body message, when the framing
    of the body is known: an explicit Content-Length, a single body
    message, or chunked encoding for streamed HTTP/1.1 responses.
    """

    def __init__(
        self,
        writer: StreamWriter,
        request: Request,
        keep_alive: bool,
        keep_alive_allowed: Callable[[], bool] = lambda: True,
    ) -> None:
        self._writer = writer
        self._request = request
        self.keep_alive = keep_alive
        self._keep_alive_allowed = keep_alive_allowed
        self.status: Optional[int] = None
        self._headers: Headers = []
        self._chunked = False
        self.head_written = False
        self.complete = asyncio.Event()

    async def __call__(self, message: Message) -> None:
        event = message['type']
        if event == 'http.response.start':
            if self.status is not None:
                raise RuntimeError('response already started')
            self.status = message['status']
            self._headers = [
                (bytes(name).lower(), bytes(value)) for name, value in message.get('headers', [])
            ]
        elif event == 'http.response.body':
            if self.status is None:
                raise RuntimeError('response body sent before response start')
            if self.complete.is_set():
                raise RuntimeError('response already completed')
            await self._write_body(message.get('body', EMPTY_BYTES), message.get('more_body', False))
        else:
            raise RuntimeError(f'unexpected ASGI message type: {event}')

    async def _write_body(self, body: bytes, more_body: bool) -> None:
        if not self.head_written:
            self._write_head(body, more_body)

        if body and self._request.method != 'HEAD':
            if self._chunked:
                self._writer.write(b'%x\r\n%s\r\n' % (len(body), body))
            else:
                self._writer.write(body)

        if not more_body:
            if self._chunked and self._request.method != 'HEAD':
                self._writer.write(b'0\r\n\r\n')
            self.complete.set()

        await self._writer.drain()

    def _write_head(self, body: bytes, more_body: bool) -> None:
        headers = [(name, value) for name, value in self._headers if name != CONNECTION]

        if get_header(headers, CONTENT_LENGTH) is None and get_header(headers, TRANSFER_ENCODING) is None:
            if not more_body:
                headers.append((CONTENT_LENGTH, b'%d' % len(body)))
            elif self._request.protocol == HTTP_1_1:
                headers.append((TRANSFER_ENCODING, CHUNKED))
                self._chunked = True
            else:
                # the end of the body is the end of the connection
                self.keep_alive = False

        if get_header(headers, DATE) is None:
            headers.append((DATE, formatdate(usegmt=True).encode()))

        self.keep_alive = self.keep_alive and self._keep_alive_allowed()
        headers.append((CONNECTION, KEEP_ALIVE if self.keep_alive else CLOSE))

        self._writer.write(status_line(self.status))
        for name, value in headers:
            self._writer.write(b'%s: %s\r\n' % (name, value))
        self._writer.write(NEWLINE_BYTES)
        self.head_written = True

    async def write_error(self, status: HTTPStatus) -> None:
        """Write a plain text error response. Used before the app started one."""
        self._headers = [(b'content-type', b'text/plain; charset=utf-8')]
        self.status = status.value
        self.keep_alive = False
        await self._write_body(b'%d %s' % (status.value, status.phrase.encode()), False)


class Server:
    """Async HTTP/1.1 server hosting an ASGI application."""

    def __init__(self, host: str, port: int, app: Application) -> None:
        self._host = host
        self._port = port

        self._app = app

        self._log: logging.Logger = getLogger('rollouts_demo.server')
        self._server: Optional[asyncio.Server] = None
        self._connections: set[_Connection] = set()
        self._drained = asyncio.Event()
        self._drained.set()
        self._closed = asyncio.Event()
        self._keep_alives_enabled = True

    @property
    def address(self) -> tuple[str, int]:
        """Return the bound host and port. The server must be started."""
        host, port, *_ = self._server.sockets[0].getsockname()
        return host, port

    @property
    def keep_alives_enabled(self) -> bool:
        return self._keep_alives_enabled and not self._closed.is_set()

    def set_keep_alives_enabled(self, enabled: bool) -> None:
        """Enable or disable keep-alive. Disabling closes idle connections."""
        self._keep_alives_enabled = enabled
        if not enabled:
            self._close_idle_connections()

    async def start(self) -> None:
        """Bind the listen address and start accepting connections."""
        try:
            self._server = await asyncio.start_server(
                self.dispatch,
                self._host or None,
                self._port,
                limit=MAX_LINE_SIZE,
            )
        except OSError as exc:
            raise exceptions.ListenError(str(exc)) from exc

        self._log.debug(f'Listening on {self.address[0]}:{self.address[1]}')

    async def serve(self) -> None:
        """Start the server if needed and wait until it stops listening."""
        if self._server is None:
            await self.start()
        await self._closed.wait()

    async def shutdown(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        """Gracefully shutdown the server.

        Stop listening, close idle connections and wait for active ones
        to finish their current request. Raise ShutdownTimeoutError if
        they do not finish in ``timeout`` seconds.
        """
        if self._server is not None:
            self._server.close()
        self._closed.set()
        self._close_idle_connections()

        try:
            await asyncio.wait_for(self._drained.wait(), timeout)
        except asyncio.TimeoutError:
            raise exceptions.ShutdownTimeoutError(
                f'{len(self._connections)} connection(s) still active after {timeout}s'
            ) from None

        self._log.info('Server closed')

    def _close_idle_connections(self) -> None:
        for connection in list(self._connections):
            if connection.idle:
                connection.close()

    async def dispatch(self, reader: StreamReader, writer: StreamWriter) -> None:
        """Serve requests on one connection until it is closed."""
        connection = _Connection(writer)
        self._connections.add(connection)
        self._drained.clear()

        try:
            while not self._closed.is_set():
                connection.idle = True
                try:
                    request = await read_request(reader)
                except exceptions.BadRequest as exc:
                    self._log.warning(f"{exc.args[0]}: {exc.status.value} {exc.status.phrase}")
                    placeholder = Request('GET', '/', HTTP_1_1, [])
                    await _ResponseWriter(writer, placeholder, False).write_error(exc.status)
                    break

                if request is None:
                    break

                connection.idle = False
                if not await self._handle(request, writer):
                    break
        except ConnectionError as exc:
            self._log.debug(f'Connection lost: {exc}')
        finally:
            self._connections.discard(connection)
            if not self._connections:
                self._drained.set()
            writer.close()

    async def _handle(self, request: Request, writer: StreamWriter) -> bool:
        """Run the app for one request. Return True if the connection stays open."""
        keep_alive = request.keep_alive and self.keep_alives_enabled and request.body_error is None
        response = _ResponseWriter(writer, request, keep_alive, lambda: self.keep_alives_enabled)

        sockname = writer.get_extra_info('sockname')
        peername = writer.get_extra_info('peername')
        scope = request.make_scope(
            server=tuple(sockname[:2]) if sockname else None,
            client=tuple(peername[:2]) if peername else None,
        )
        if request.body_error is not None:
            # the app only sees a disconnect, the cause travels in the request state
            scope['state'] = {'body_error': request.body_error}

        request_sent = False

        async def _receive() -> Message:
            nonlocal request_sent
            if request.body_error is not None:
                return {'type': 'http.disconnect'}

            if not request_sent:
                request_sent = True
                return {'type': 'http.request', 'body': request.body, 'more_body': False}

            await response.complete.wait()
            return {'type': 'http.disconnect'}

        try:
            await self._app(scope, _receive, response)
        except Exception as exc:
            self._log.exception(exc)
            if response.head_written:
                return False
            await response.write_error(HTTPStatus.INTERNAL_SERVER_ERROR)
            return False

        if not response.complete.is_set():
            self._log.warning(f'{request.method} {request.target}: application returned an incomplete response')
            if not response.head_written:
                await response.write_error(HTTPStatus.INTERNAL_SERVER_ERROR)
            return False

        return response.keep_alive and self.keep_alives_enabled
