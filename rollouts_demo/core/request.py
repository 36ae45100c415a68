import asyncio
import urllib.parse as urlparse
from asyncio import StreamReader
from typing import NamedTuple, Optional

from rollouts_demo.core import exceptions
from rollouts_demo.core.constants import (
    CHUNKED,
    CLOSE,
    CONNECTION,
    CONTENT_LENGTH,
    EMPTY_BYTES,
    EOF_BYTES,
    HTTP_1_1,
    KEEP_ALIVE,
    MAX_HEADERS,
    NEWLINE_BYTES,
    SUPPORTED_PROTOCOLS,
    TRANSFER_ENCODING,
)
from rollouts_demo.core.types import Headers, Scope


class Request(NamedTuple):
    """Request representation.

    ``body_error`` holds the text of the error that interrupted reading the
    body, if any. The application sees such a request as a disconnect.
    """
    method: str
    target: str
    protocol: str
    headers: Headers
    body: bytes = EMPTY_BYTES
    body_error: Optional[str] = None

    def header(self, name: bytes) -> Optional[bytes]:
        """Return the value of the last header with this name, or None."""
        return get_header(self.headers, name)

    @property
    def keep_alive(self) -> bool:
        """Return True if the client asked to keep the connection open"""
        tokens = {
            token.strip().lower()
            for token in (self.header(CONNECTION) or EMPTY_BYTES).split(b',')
        }
        if self.protocol == HTTP_1_1:
            return CLOSE not in tokens
        return KEEP_ALIVE in tokens

    def make_scope(self, server: Optional[tuple], client: Optional[tuple]) -> Scope:
        """Build the ASGI http scope for this request."""
        url = urlparse.urlsplit(self.target)
        return {
            'type': 'http',
            'asgi': {'version': '3.0', 'spec_version': '2.3'},
            'http_version': self.protocol.removeprefix('HTTP/'),
            'method': self.method,
            'scheme': 'http',
            'path': urlparse.unquote(url.path),
            'raw_path': url.path.encode('latin-1'),
            'query_string': url.query.encode('latin-1'),
            'root_path': '',
            'headers': self.headers,
            'server': server,
            'client': client,
        }


def get_header(headers: Headers, name: bytes) -> Optional[bytes]:
    """Return the value of the last header with this name, or None."""
    value = None
    for header_name, header_value in headers:
        if header_name == name:
            value = header_value
    return value


async def read_request(reader: StreamReader) -> Optional[Request]:
    """Read a request from the stream.

    Return None if the client closed the connection before sending a
    request line. Raise BadRequest on malformed input.
    """
    if (first_line := await _readline(reader)) in EOF_BYTES:
        return None

    parts = first_line.decode('latin-1').strip().split(' ')
    if len(parts) != 3:
        raise exceptions.BadRequest(f'malformed request line: {first_line!r}')

    method, target, protocol = parts
    if protocol not in SUPPORTED_PROTOCOLS:
        raise exceptions.BadRequest(f'unsupported protocol: {protocol}')
    if not target.startswith('/'):
        raise exceptions.BadRequest(f'malformed request target: {target}')

    headers = await _read_headers(reader)

    body, body_error = EMPTY_BYTES, None
    try:
        body = await _read_body(reader, headers)
    except asyncio.IncompleteReadError as exc:
        body_error = f'unexpected EOF: {exc}'

    return Request(method.upper(), target, protocol, headers, body, body_error)


async def _readline(reader: StreamReader) -> bytes:
    try:
        return await reader.readline()
    except ValueError as exc:
        # the line is longer than the stream limit
        raise exceptions.BadRequest(str(exc)) from exc


async def _read_headers(reader: StreamReader) -> Headers:
    headers: Headers = []
    while True:
        line = await _readline(reader)
        if line == NEWLINE_BYTES:
            return headers
        if line == EMPTY_BYTES:
            raise exceptions.BadRequest('connection closed while reading headers')

        name, sep, value = line.partition(b':')
        if not sep or not name.strip():
            raise exceptions.BadRequest(f'malformed header: {line!r}')

        headers.append((name.strip().lower(), value.strip()))
        if len(headers) > MAX_HEADERS:
            raise exceptions.BadRequest('too many headers')


async def _read_body(reader: StreamReader, headers: Headers) -> bytes:
    encoding = get_header(headers, TRANSFER_ENCODING)
    if encoding is not None:
        if encoding.lower() != CHUNKED:
            raise exceptions.BadRequest(f'unsupported transfer encoding: {encoding!r}')
        return await _read_chunked(reader)

    length = get_header(headers, CONTENT_LENGTH)
    if length is None:
        return EMPTY_BYTES

    try:
        size = int(length)
    except ValueError:
        raise exceptions.BadRequest(f'invalid content length: {length!r}') from None
    if size < 0:
        raise exceptions.BadRequest(f'invalid content length: {length!r}')

    return await reader.readexactly(size)


async def _read_chunked(reader: StreamReader) -> bytes:
    body = bytearray()
    while True:
        size_line = await _readline(reader)
        if size_line == EMPTY_BYTES:
            raise asyncio.IncompleteReadError(bytes(body), None)

        size_str, *_extensions = size_line.split(b';')
        try:
            size = int(size_str.strip(), 16)
        except ValueError:
            raise exceptions.BadRequest(f'invalid chunk size: {size_line!r}') from None

        if size == 0:
            # trailers are read and dropped
            while await _readline(reader) not in EOF_BYTES:
                pass
            return bytes(body)

        body += await reader.readexactly(size)
        if await reader.readexactly(2) != NEWLINE_BYTES:
            raise exceptions.BadRequest('missing chunk terminator')
