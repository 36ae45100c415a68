import asyncio
from types import SimpleNamespace
from typing import NamedTuple

import pytest


class RawResponse(NamedTuple):
    status: int
    headers: dict
    body: bytes


async def read_response(reader: asyncio.StreamReader, head: bool = False) -> RawResponse:
    """Read one HTTP/1.1 response with a Content-Length framed body"""
    status_line = await reader.readline()
    assert status_line, 'connection closed before the response'
    _protocol, status, *_ = status_line.split(b' ', 2)

    headers = {}
    while (line := await reader.readline()) not in (b'\r\n', b''):
        name, _, value = line.decode('latin-1').partition(':')
        headers[name.strip().lower()] = value.strip()

    body = b''
    if not head:
        body = await reader.readexactly(int(headers.get('content-length', 0)))

    return RawResponse(int(status), headers, body)


async def send_request(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    method: str = 'GET',
    path: str = '/',
    body: bytes = b'',
    headers: tuple = (),
) -> RawResponse:
    lines = [f'{method} {path} HTTP/1.1', 'Host: test']
    if body:
        lines.append(f'Content-Length: {len(body)}')
    lines.extend(headers)
    writer.write(('\r\n'.join(lines) + '\r\n\r\n').encode() + body)
    await writer.drain()
    return await read_response(reader, head=method == 'HEAD')


@pytest.fixture(scope='session')
def http():
    """Raw HTTP helpers: ``http.send_request`` and ``http.read_response``"""
    return SimpleNamespace(send_request=send_request, read_response=read_response)
