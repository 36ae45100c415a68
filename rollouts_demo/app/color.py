import asyncio
import logging
import random
from http import HTTPStatus
from typing import Optional

from fastapi import Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, ValidationInfo, field_validator
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect

logger = logging.getLogger('rollouts_demo.color')

# some clients send the JSON string "[]" instead of an empty array
EMPTY_PAYLOAD = b'"[]"'


class ColorParameters(BaseModel):
    """Simulation parameters for the instance with the given color."""
    # no coercion between JSON types, and no inf or NaN delays
    model_config = ConfigDict(populate_by_name=True, extra='ignore', strict=True, allow_inf_nan=False)

    color: str = ''
    delay_length: float = Field(default=0.0, alias='delayLength')
    return500_probability: Optional[int] = Field(default=None, alias='return500')

    @field_validator('color', 'delay_length', mode='before')
    @classmethod
    def null_is_zero(cls, value, info: ValidationInfo):
        """A JSON null leaves the field at its zero value"""
        if value is None:
            return cls.model_fields[info.field_name].default
        return value


_payload_adapter = TypeAdapter(Optional[list[Optional[ColorParameters]]])


def parse_parameters(body: bytes) -> list[ColorParameters]:
    """Parse the request body. Raise ValidationError on malformed payload."""
    if not body or body == EMPTY_PAYLOAD:
        return []
    entries = _payload_adapter.validate_json(body) or []
    return [entry for entry in entries if entry is not None]


def select_parameters(parameters: list[ColorParameters], color: str) -> ColorParameters:
    """Return the parameters for ``color``. The last matching entry wins."""
    selected = ColorParameters()
    for entry in parameters:
        if entry.color == color:
            selected = entry
    return selected


def draw_status(parameters: ColorParameters, rng: random.Random) -> HTTPStatus:
    """Return 500 with the requested probability, 200 otherwise"""
    probability = parameters.return500_probability
    if probability is not None and probability > 0 and probability >= rng.randrange(100):
        return HTTPStatus.INTERNAL_SERVER_ERROR
    return HTTPStatus.OK


def color_response(color: str, status: HTTPStatus, background: Optional[BackgroundTask] = None) -> PlainTextResponse:
    return PlainTextResponse(
        f'"{color}"',
        status_code=status,
        headers={'X-Content-Type-Options': 'nosniff'},
        background=background,
    )


class ColorResponder:
    """Reply with this instance's color, simulating latency and failures.

    The request body is a JSON array of ColorParameters; only the entry
    matching the configured color applies.
    """

    def __init__(self, color: str, rng: Optional[random.Random] = None) -> None:
        self.color = color
        self._rng = rng or random.Random()

    async def __call__(self, request: Request) -> PlainTextResponse:
        try:
            body = await request.body()
        except ClientDisconnect as exc:
            body_error = getattr(request.state, 'body_error', None)
            message = body_error or str(exc) or 'client disconnected while reading the request body'
            logger.error(message)
            return PlainTextResponse(message, status_code=HTTPStatus.INTERNAL_SERVER_ERROR)

        try:
            parameters = parse_parameters(body)
        except ValidationError as exc:
            logger.error(f'{body.decode(errors="replace")}: {exc}')
            return PlainTextResponse(str(exc), status_code=HTTPStatus.INTERNAL_SERVER_ERROR)

        params = select_parameters(parameters, self.color)

        delay = ''
        if params.delay_length > 0:
            delay = f' ({params.delay_length:f}s)'
            await asyncio.sleep(params.delay_length)

        status = draw_status(params, self._rng)
        # logged once the response has been sent
        log_status = BackgroundTask(logger.info, f'{status.value} - {self.color}{delay}')
        return color_response(self.color, status, background=log_status)
