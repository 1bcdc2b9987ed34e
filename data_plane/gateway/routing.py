# Function invocation gateway
# Requests to /function/<name>/... are held until the function has a ready replica
# (scaling it up from zero when needed) and then proxied to the provider.
import logging
from http import HTTPStatus
from typing import Optional
from urllib.parse import quote

import httpx
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

from control_plane.autoscaler import FunctionScaler, ScalingConfig
from control_plane.service_query import ProviderServiceQuery, ServiceQuery
from data_plane.gateway.config import GatewayConfig, load_config
from data_plane.gateway.scaling import ScaleGate

logger = logging.getLogger(__name__)

INVOKE_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

# Headers that belong to a single connection and must not be forwarded
HOP_BY_HOP_HEADERS = {
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailers", "transfer-encoding", "upgrade", "host", "content-length",
}


class FunctionProxy:
    """
    Forwards an invocation unchanged to the provider, which routes it to a function replica.
    """
    def __init__(self, base_url: str, client: httpx.AsyncClient):
        self.base_url = base_url.rstrip("/")
        self.client = client

    async def __call__(self, request: Request) -> Response:
        # Path as received, percent-escapes included
        raw_path = request.scope.get("raw_path")
        path = raw_path.decode("latin-1") if raw_path else quote(request.url.path)
        target_url = f"{self.base_url}{path}"
        if request.url.query:
            target_url = f"{target_url}?{request.url.query}"

        headers = {k: v for k, v in request.headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}
        body = await request.body()

        try:
            upstream = await self.client.request(request.method, target_url, headers=headers, content=body)
        except httpx.TimeoutException:
            logger.error(f"Upstream timed out for {request.url.path}")
            return PlainTextResponse(
                f"upstream timed out for {request.url.path}", status_code=HTTPStatus.GATEWAY_TIMEOUT
            )
        except httpx.HTTPError as e:
            # Replica is unreachable (Pod down, network issue, or not ready)
            logger.error(f"Upstream unreachable for {request.url.path}: {e}")
            return PlainTextResponse(
                f"unable to reach upstream for {request.url.path}: {e}", status_code=HTTPStatus.BAD_GATEWAY
            )

        # httpx already decoded the body, so the encoding headers no longer apply
        response_headers = {
            k: v for k, v in upstream.headers.items()
            if k.lower() not in HOP_BY_HOP_HEADERS and k.lower() != "content-encoding"
        }
        return Response(content=upstream.content, status_code=upstream.status_code, headers=response_headers)


def create_app(
    config: GatewayConfig,
    service_query: Optional[ServiceQuery] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Builds the gateway app.

    Args:
        config: Gateway settings, usually from load_config().
        service_query: Replica read/write capability; defaults to the provider's HTTP API.
        transport: Optional httpx transport for the shared client.
    """
    app = FastAPI(title="scale-gateway")

    @app.on_event("startup")
    async def startup_event():
        """
        1. Create the shared httpx client used for proxying and replica queries
        2. Wire the scaler and the gate in front of the proxy
        """
        app.state.http_client = httpx.AsyncClient(timeout=config.upstream_timeout, transport=transport)
        query = service_query or ProviderServiceQuery(config.functions_provider_url, client=app.state.http_client)
        proxy = FunctionProxy(config.functions_provider_url, app.state.http_client)

        if config.scale_from_zero:
            scaler = FunctionScaler(ScalingConfig(
                max_poll_count=config.max_poll_count,
                function_poll_interval=config.function_poll_interval,
                cache_expiry=config.cache_expiry,
                service_query=query,
            ))
            app.state.scaler = scaler
            app.state.invoke = ScaleGate(proxy, scaler)
        else:
            app.state.scaler = None
            app.state.invoke = proxy
        logger.info(f"Gateway ready, provider={config.functions_provider_url} scale_from_zero={config.scale_from_zero}")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Close the httpx client when the server shuts down"""
        await app.state.http_client.aclose()

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.api_route("/function/{path:path}", methods=INVOKE_METHODS)
    async def invoke(request: Request):
        """Routes the invocation through the scale gate (when enabled) to the function."""
        return await request.app.state.invoke(request)

    return app


def main():
    config = load_config()
    logging.basicConfig(
        level=config.log_level,
        format='%(asctime)s - [Gateway] - %(levelname)s - %(message)s'
    )
    logger.info(f"🚀 Gateway starting on port {config.port}")
    uvicorn.run(create_app(config), host="0.0.0.0", port=config.port, log_level=config.log_level.lower())


if __name__ == '__main__':
    main()
