"""Prometheus scrape endpoint."""

from fastapi import APIRouter, Request, Response

from bff.exceptions import NotFoundError

router = APIRouter(tags=["metrics"])


@router.get("/metrics", include_in_schema=False)
async def get_metrics(request: Request) -> Response:
    metrics = getattr(request.app.state, "metrics", None)
    if metrics is None:
        raise NotFoundError("Metrics are disabled")
    return Response(content=metrics.render(), media_type=metrics.content_type)
