import logging
import random
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from .logging_config import trace_id_var
from .services.prometheus_metrics import prometheus_metrics

logger = logging.getLogger("http")


class TracingMiddleware(BaseHTTPMiddleware):
    """Request tracing, structured access logging and request metrics"""

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.log_config = getattr(logging, '_config', {
            "exclude_paths": ["/v1/health", "/v1/metrics/prometheus"],
            "sample_rate": 1.0
        })

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = trace_id_var.set(trace_id)
        customer_id = request.headers.get("X-Customer-ID")
        start_time = time.time()

        try:
            response = await call_next(request)
            latency_ms = round((time.time() - start_time) * 1000, 2)
            self._log_request(request.method, request.url.path, response.status_code,
                              latency_ms, customer_id)
            prometheus_metrics.increment_requests(response.status_code, request.url.path)
            response.headers["X-Request-ID"] = trace_id
            return response
        except Exception as e:
            latency_ms = round((time.time() - start_time) * 1000, 2)
            logger.error(f"Request failed: {e}", extra={
                "method": request.method,
                "path": request.url.path,
                "status": 500,
                "latency_ms": latency_ms,
                "customer_id": customer_id
            })
            prometheus_metrics.increment_requests(500, request.url.path)
            raise
        finally:
            trace_id_var.reset(token)

    def _log_request(self, method: str, path: str, status: int, latency_ms: float,
                     customer_id):
        if path in self.log_config["exclude_paths"]:
            return

        extra = {
            "method": method,
            "path": path,
            "status": status,
            "latency_ms": latency_ms,
            "customer_id": customer_id
        }
        # Always log errors
        if status >= 400:
            logger.log(logging.ERROR if status >= 500 else logging.WARNING, "HTTP Request", extra=extra)
            return

        if random.random() > self.log_config["sample_rate"]:
            return
        logger.info("HTTP Request", extra=extra)
