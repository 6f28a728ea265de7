from __future__ import annotations

import os
import time
from typing import Any, Mapping, Optional

import sentry_sdk
from flask import Flask, Response, g, request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from sentry_sdk.integrations.flask import FlaskIntegration

from feedagg.blueprints.api import api_bp
from feedagg.db import get_engine
from feedagg.extensions import login_manager
from feedagg.logging import configure_logging
from feedagg.security import load_user_from_request, unauthorized


REQUEST_COUNT = Counter(
    "flask_app_requests_total", "Total HTTP requests", ["method", "path", "status_code"]
)
REQUEST_LATENCY = Histogram(
    "flask_app_request_latency_seconds", "Request latency", ["endpoint"]
)


def create_app(test_config: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object("config.Config")
    if test_config:
        app.config.update(test_config)

    configure_logging(app.config.get("LOG_LEVEL"))
    dsn = os.getenv("SENTRY_DSN")
    if dsn:  # pragma: no cover - external service
        sentry_sdk.init(dsn=dsn, integrations=[FlaskIntegration()])

    get_engine(app.config.get("DATABASE_URL"))

    login_manager.init_app(app)
    login_manager.request_loader(load_user_from_request)
    login_manager.unauthorized_handler(unauthorized)

    app.register_blueprint(api_bp, url_prefix="/v1")

    @app.before_request
    def _start_timer() -> None:  # pragma: no cover - request timing
        g.start_time = time.perf_counter()

    @app.after_request
    def _record_request(response: Response) -> Response:  # pragma: no cover - request timing
        elapsed = time.perf_counter() - getattr(g, "start_time", time.perf_counter())
        endpoint = request.endpoint or "unknown"
        REQUEST_LATENCY.labels(endpoint).observe(elapsed)
        REQUEST_COUNT.labels(request.method, request.path, response.status_code).inc()
        return response

    @app.route("/metrics")
    def metrics() -> Response:
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)

    @app.route("/health")
    def health() -> tuple[str, int]:
        return "ok", 200

    @app.route("/ready")
    def ready() -> tuple[str, int]:
        return "ok", 200

    return app
