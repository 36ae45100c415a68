import pathlib
import random
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import Response

from rollouts_demo.app.color import ColorResponder
from rollouts_demo.app.static import StaticResponder
from rollouts_demo.core.constants import DEFAULT_COLOR

# /color and the static files answer any method
METHODS = ['GET', 'HEAD', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS']


def create_app(
    color: str = DEFAULT_COLOR,
    root: str | pathlib.Path = '.',
    rng: Optional[random.Random] = None,
) -> FastAPI:
    """Create the demo application reporting ``color``."""
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    color_responder = ColorResponder(color, rng=rng)
    static_responder = StaticResponder(root)

    @app.api_route('/color', methods=METHODS)
    async def get_color(request: Request) -> Response:
        return await color_responder(request)

    @app.api_route('/{path:path}', methods=METHODS)
    async def static_files(request: Request) -> Response:
        return await static_responder(request)

    return app
