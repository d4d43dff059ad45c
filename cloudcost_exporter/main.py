"""
Main FastAPI application bootstrap.
Serves Prometheus metrics for the configured cloud provider.
"""
import logging
import sys
import threading

import uvicorn
from fastapi import FastAPI, Response
from fastapi.responses import HTMLResponse, JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from cloudcost_exporter.core.config import config
from cloudcost_exporter.providers.provider import Provider, build_provider


logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(level: str = "info", output: str = "stdout") -> None:
    """
    Configure the root logger.

    Args:
        level: debug, info, warning or error
        output: stdout or stderr
    """
    logging.basicConfig(
        level=LOG_LEVELS.get(level.lower(), logging.INFO),
        stream=sys.stderr if output == "stderr" else sys.stdout,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )


def create_app(provider: Provider, metrics_path: str = "/metrics") -> FastAPI:
    """
    Build the exporter's HTTP application.

    Args:
        provider: Provider registered with a dedicated Prometheus registry
        metrics_path: Path serving the exposition format

    Returns:
        FastAPI app
    """
    registry = CollectorRegistry()
    registry.register(provider)

    app = FastAPI(
        title="Cloud Cost Exporter",
        description="Prometheus exporter for cloud resource list prices",
    )
    app.state.provider = provider

    @app.get("/", response_class=HTMLResponse)
    def root() -> HTMLResponse:
        return HTMLResponse(content=f"""
        <!DOCTYPE html>
        <html>
        <head><title>Cloud Cost Exporter</title></head>
        <body>
            <h1>Cloud Cost Exporter</h1>
            <p>Provider: {provider.name}</p>
            <p><a href="{metrics_path}">Metrics</a></p>
        </body>
        </html>
        """)

    @app.get(metrics_path)
    def metrics() -> Response:
        """Run a scrape of every collector."""
        return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    def healthz() -> dict:
        return {"status": "ok"}

    @app.get("/readyz")
    def readyz() -> JSONResponse:
        """
        Readiness: every collector has built its pricing maps at least once.

        The body distinguishes maps never built (ready=false) from maps past
        their refresh time (stale=true).
        """
        ready = provider.is_ready()
        return JSONResponse(
            status_code=200 if ready else 503,
            content={"status": "ready" if ready else "not_ready", "collectors": provider.readiness()},
        )

    @app.post("/refresh")
    def refresh() -> JSONResponse:
        """Force a rebuild of every pricing map."""
        outcome = provider.refresh()
        failed = any(error is not None for error in outcome.values())
        return JSONResponse(
            status_code=502 if failed else 200,
            content={"status": "failed" if failed else "refreshed", "collectors": outcome},
        )

    return app


def _warm_up(provider: Provider) -> None:
    logger.info(f"Building initial {provider.name} pricing maps")
    provider.refresh()


def main() -> None:
    configure_logging(config.LOG_LEVEL, config.LOG_OUTPUT)
    try:
        config.validate()
    except ValueError as error:
        raise RuntimeError(f"Configuration error: {error}") from error

    provider = build_provider(config)
    app = create_app(provider, config.METRICS_PATH)
    threading.Thread(target=_warm_up, args=(provider,), name="pricing-warm-up", daemon=True).start()

    logger.info(f"Serving {provider.name} metrics on {config.SERVER_HOST}:{config.SERVER_PORT}{config.METRICS_PATH}")
    uvicorn.run(app, host=config.SERVER_HOST, port=config.SERVER_PORT, log_config=None)


if __name__ == "__main__":
    main()
