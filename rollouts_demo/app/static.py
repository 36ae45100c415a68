import asyncio
import html
import logging
import os
import pathlib
import posixpath
import stat
import urllib.parse as urlparse
from http import HTTPStatus
from typing import Optional

from fastapi import Request
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse, RedirectResponse, Response

logger = logging.getLogger('rollouts_demo.static')

INDEX_PAGE = 'index.html'


def not_found() -> PlainTextResponse:
    return PlainTextResponse('404 page not found', status_code=HTTPStatus.NOT_FOUND)


def forbidden() -> PlainTextResponse:
    return PlainTextResponse('403 Forbidden', status_code=HTTPStatus.FORBIDDEN)


def local_redirect(location: str) -> RedirectResponse:
    """Redirect relative to the request path"""
    return RedirectResponse(location, status_code=HTTPStatus.MOVED_PERMANENTLY)


def render_listing(entries: list[os.DirEntry]) -> str:
    """Render a directory listing page"""
    lines = ['<!doctype html>', '<meta name="viewport" content="width=device-width">', '<pre>']
    for entry in sorted(entries, key=lambda e: e.name):
        name = entry.name
        if entry.is_dir():
            name += '/'
        lines.append(f'<a href="{html.escape(urlparse.quote(name))}">{html.escape(name)}</a>')
    lines.append('</pre>')
    return '\n'.join(lines) + '\n'


def _check_readable(path: pathlib.Path) -> None:
    """Raise PermissionError before any response head is sent"""
    with open(path, 'rb'):
        pass


def _scan(path: pathlib.Path) -> list[os.DirEntry]:
    with os.scandir(path) as it:
        return list(it)


class StaticResponder:
    """Serve files and directory listings from a root directory."""

    def __init__(self, root: str | pathlib.Path = '.') -> None:
        self.root = pathlib.Path(root).resolve()

    def resolve(self, path: str) -> pathlib.Path:
        """Map a request path to a file system path below the root.

        ``..`` components are collapsed against ``/`` first, so the
        result never leaves the root.
        """
        clean = posixpath.normpath('/' + path.lstrip('/'))
        return self.root.joinpath(*[part for part in clean.split('/') if part])

    async def __call__(self, request: Request) -> Response:
        url_path = request.url.path
        if url_path.endswith('/' + INDEX_PAGE):
            return local_redirect('./')

        full_path = self.resolve(url_path)
        loop = asyncio.get_running_loop()
        try:
            stat_result = await loop.run_in_executor(None, os.stat, full_path)
        except (FileNotFoundError, NotADirectoryError):
            return not_found()
        except PermissionError:
            return forbidden()

        if stat.S_ISDIR(stat_result.st_mode):
            if not url_path.endswith('/'):
                return local_redirect(posixpath.basename(url_path) + '/')
            return await self._serve_directory(full_path)

        if url_path.endswith('/'):
            return local_redirect('../' + posixpath.basename(url_path.rstrip('/')))

        return await self._serve_file(full_path, stat_result)

    async def _serve_file(self, path: pathlib.Path, stat_result: Optional[os.stat_result] = None) -> Response:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _check_readable, path)
        except PermissionError:
            return forbidden()
        return FileResponse(path, stat_result=stat_result)

    async def _serve_directory(self, path: pathlib.Path) -> Response:
        index = path / INDEX_PAGE
        loop = asyncio.get_running_loop()
        if await loop.run_in_executor(None, index.is_file):
            return await self._serve_file(index)

        try:
            entries = await loop.run_in_executor(None, _scan, path)
        except PermissionError:
            return forbidden()
        except OSError as e:
            logger.exception(e)
            return PlainTextResponse(
                'Error reading directory', status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            )

        return HTMLResponse(render_listing(entries))
