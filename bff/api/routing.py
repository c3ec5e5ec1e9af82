"""
Idempotent routes.

Routers built with `idempotent_route_class(config)` run every handler whose
method is in the config through the IdempotencyInterceptor. Replayed
responses carry `X-Idempotency-Replay: true`; fresh ones carry `false`.
"""

from typing import Callable, Coroutine

from fastapi import Request, Response
from fastapi.routing import APIRoute

from bff.services.idempotency import (
    REPLAY_HEADER,
    IdempotencyConfig,
    IdempotencyInterceptor,
    StoredResponse,
)

Handler = Callable[[Request], Coroutine[None, None, Response]]


def idempotent_route_class(config: IdempotencyConfig | None = None) -> type[APIRoute]:
    """Build an APIRoute subclass bound to an idempotency config."""

    class IdempotentRoute(APIRoute):
        def get_route_handler(self) -> Handler:
            original = super().get_route_handler()

            async def handler(request: Request) -> Response:
                cache = getattr(request.app.state, "cache", None)
                route_config = config or getattr(
                    request.app.state, "idempotency_config", IdempotencyConfig()
                )
                interceptor = IdempotencyInterceptor(cache, route_config)
                if cache is None or not interceptor.applies_to(request.method):
                    return await original(request)

                user = getattr(request.state, "user", None)
                key = interceptor.derive_key(
                    request.method,
                    request.url.path,
                    request.headers,
                    await request.body(),
                    user.id if user else None,
                )
                if key is None:
                    return await original(request)

                produced: list[Response] = []

                async def run() -> StoredResponse:
                    response = await original(request)
                    produced.append(response)
                    content_type = response.headers.get("content-type")
                    return StoredResponse(
                        status_code=response.status_code,
                        body=bytes(response.body).decode("utf-8"),
                        headers={"content-type": content_type} if content_type else {},
                    )

                result = await interceptor.intercept(key, run)

                if result.replay:
                    stored = result.response
                    replayed = Response(
                        content=stored.body,
                        status_code=stored.status_code,
                        headers=stored.headers,
                    )
                    replayed.headers[REPLAY_HEADER] = "true"
                    return replayed

                response = produced[0]
                response.headers[REPLAY_HEADER] = "false"
                return response

            return handler

    return IdempotentRoute
