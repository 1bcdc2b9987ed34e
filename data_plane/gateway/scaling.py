import logging
from http import HTTPStatus
from typing import Awaitable, Callable

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse

from control_plane.autoscaler import FunctionScaler

logger = logging.getLogger(__name__)

FUNCTION_PREFIX = "/function/"

Handler = Callable[[Request], Awaitable[Response]]


def get_service_name(url: str) -> str:
    """Extracts the function name from a /function/<name>/... request target."""
    path = url.split("?", 1)[0].split("#", 1)[0]
    index = path.find(FUNCTION_PREFIX)
    if index == -1:
        return ""
    return path[index + len(FUNCTION_PREFIX):].split("/", 1)[0]


class ScaleGate:
    """
    Holds an invocation until its function has capacity, then hands it to `next_handler`.
    Every outcome ends in a response: 404 unknown function, 500 scaling error,
    504 when no replica became ready within the poll budget.
    """
    def __init__(self, next_handler: Handler, scaler: FunctionScaler):
        self.next_handler = next_handler
        self.scaler = scaler

    async def __call__(self, request: Request) -> Response:
        function_name = get_service_name(request.url.path)
        result = await self.scaler.scale(function_name)

        if not result.found:
            message = f"error finding function {function_name}: {result.error}"
            logger.error(f"Scaling: {message}")
            return PlainTextResponse(message, status_code=HTTPStatus.NOT_FOUND)

        if result.error is not None:
            message = f"error finding function {function_name}: {result.error}"
            logger.error(f"Scaling: {message}")
            return PlainTextResponse(message, status_code=HTTPStatus.INTERNAL_SERVER_ERROR)

        if result.available:
            return await self.next_handler(request)

        logger.warning(f"[Scale] function={function_name} 0=>N timed-out after {result.duration:.3f} seconds")
        return PlainTextResponse(
            f"function {function_name} was not ready after {result.duration:.2f}s",
            status_code=HTTPStatus.GATEWAY_TIMEOUT,
        )
