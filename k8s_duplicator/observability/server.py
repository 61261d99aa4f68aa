"""
Probe and Metrics Servers - Flask apps for the kubelet and Prometheus.

Blueprint: probes_bp
Routes:
    /healthz   liveness, 200 while the process serves requests
    /readyz    readiness, runs the health checker, 503 when unhealthy

Blueprint: metrics_bp
Routes:
    /metrics   Prometheus text exposition

Each app is served by a werkzeug server on a daemon thread so the
controller's own threads stay in charge of the process lifetime.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from flask import Blueprint, Flask, Response, current_app, jsonify
from werkzeug.serving import BaseWSGIServer, make_server

from ..config.loader import parse_bind_address
from .health import HealthChecker
from .metrics import MetricsRegistry, metrics

logger = logging.getLogger(__name__)

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

probes_bp = Blueprint("probes", __name__)
metrics_bp = Blueprint("metrics", __name__)


@probes_bp.route("/healthz")
def healthz():
    return jsonify({"status": "ok"})


@probes_bp.route("/readyz")
def readyz():
    checker: HealthChecker = current_app.config["HEALTH_CHECKER"]
    health = checker.check()
    code = 200 if health.ready else 503
    return jsonify(health.to_dict()), code


@metrics_bp.route("/metrics")
def export_metrics():
    registry: MetricsRegistry = current_app.config["METRICS_REGISTRY"]
    return Response(registry.export_prometheus(), content_type=PROMETHEUS_CONTENT_TYPE)


def create_probe_app(checker: HealthChecker) -> Flask:
    """Create the liveness/readiness app."""
    app = Flask(__name__)
    app.config["HEALTH_CHECKER"] = checker
    app.register_blueprint(probes_bp)
    return app


def create_metrics_app(registry: Optional[MetricsRegistry] = None) -> Flask:
    """Create the Prometheus scrape app."""
    app = Flask(__name__)
    app.config["METRICS_REGISTRY"] = registry or metrics
    app.register_blueprint(metrics_bp)
    return app


class BackgroundServer:
    """A werkzeug server for ``app`` running on a daemon thread."""

    def __init__(self, app: Flask, address: str, name: str):
        host, port = parse_bind_address(address)
        self.name = name
        self.address = address
        self._server: BaseWSGIServer = make_server(host, port, app, threaded=True)
        self._thread = threading.Thread(
            target=self._server.serve_forever, name=f"duplicator-{name}", daemon=True
        )

    @property
    def port(self) -> int:
        return self._server.server_port

    def start(self) -> None:
        self._thread.start()
        logger.info(f"Serving {self.name} on {self.address}")

    def stop(self) -> None:
        self._server.shutdown()
        self._thread.join(timeout=5)
