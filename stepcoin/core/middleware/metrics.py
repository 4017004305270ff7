from starlette.middleware.base import BaseHTTPMiddleware

from stepcoin.core.metrics import http_requests_total, normalize_path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record HTTP request metrics (Prometheus-style)."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        _record_request_metric(request, response)
        return response


def _route_template(request) -> str:
    # Matched route path ("/v1/wallet/{user_id}") keeps user ids out of labels
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return template or normalize_path(request.url.path)


def _record_request_metric(request, response) -> None:
    try:
        status = getattr(response, "status_code", None) or 0
        http_requests_total.inc(labels={
            "method": request.method.upper(),
            "path": _route_template(request),
            "status": str(status),
        })
    except Exception:
        # Do not fail the request on metrics errors
        return
