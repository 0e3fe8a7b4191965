from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Optional, Tuple

import click
from flask import Flask, Response, jsonify, request
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from werkzeug.exceptions import HTTPException

from firewall_client import FirewallClient
from metrics_collector import IptablesCollector, default_descriptors
from rule_aggregator import MATCH_EVERYTHING, InvalidPatternError, RuleCapture

__version__ = "0.1.0"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LANDING_PAGE = """<html>
<head><title>iptables exporter</title></head>
<body>
<h1>iptables exporter</h1>
<p><a href="{metrics_path}">Metrics</a></p>
</body>
</html>"""


def configure_logging(level: str = "info") -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(log_level)


def create_app(collector: IptablesCollector, metrics_path: str = "/metrics") -> Flask:
    app = Flask(__name__)
    registry = CollectorRegistry(auto_describe=True)
    registry.register(collector)

    @app.route("/")
    def index() -> str:
        return LANDING_PAGE.format(metrics_path=metrics_path)

    def metrics() -> Response:
        return Response(generate_latest(registry), content_type=CONTENT_TYPE_LATEST)

    if metrics_path == "/":
        raise ValueError("metrics path must not be the landing page '/'")
    app.add_url_rule(metrics_path, "metrics", metrics)

    @app.errorhandler(Exception)
    def handle_exception(exc: Exception) -> Any:
        if isinstance(exc, HTTPException):
            return exc
        app.logger.exception("Unhandled error on %s: %s", request.path, exc)
        return jsonify({"error": str(exc)}), 500

    return app


def parse_listen_address(address: str) -> Tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address {address!r}, expected [host]:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host or "[" in host or "]" in host:
        raise ValueError(f"invalid listen address {address!r}, IPv6 hosts must be bracketed")
    host = host or "0.0.0.0"
    return host, int(port)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--web.listen-address", "listen_address", default=":9455", show_default=True,
              help="Address on which to expose metrics and web interface.")
@click.option("--web.telemetry-path", "metrics_path", default="/metrics", show_default=True,
              help="Path under which to expose metrics.")
@click.option("--iptables.capture-re", "capture_re", default=MATCH_EVERYTHING, show_default=True,
              help="Regular expression used to export as 'rule' label desired bits from iptables rule.")
@click.option("--iptables.capture-separator", "capture_separator", default="",
              help="String placed between capture groups when the expression has several.")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="JSON file with the iptables-save command and optional SSH settings.")
@click.option("--log.level", "log_level", default="info", show_default=True,
              type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
              help="Only log messages with the given severity or above.")
@click.version_option(__version__, prog_name="iptables_exporter")
def main(
    listen_address: str,
    metrics_path: str,
    capture_re: str,
    capture_separator: str,
    config_file: Optional[Path],
    log_level: str,
) -> None:
    """Export iptables rule counters as Prometheus metrics."""
    configure_logging(log_level)
    logger = logging.getLogger("iptables_exporter")

    try:
        capture = RuleCapture(capture_re, capture_separator)
    except InvalidPatternError as exc:
        raise click.BadParameter(str(exc), param_hint="--iptables.capture-re") from exc
    try:
        host, port = parse_listen_address(listen_address)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--web.listen-address") from exc
    if not metrics_path.startswith("/"):
        raise click.BadParameter("must start with '/'", param_hint="--web.telemetry-path")
    if metrics_path == "/":
        raise click.BadParameter("must not be '/', which serves the landing page",
                                 param_hint="--web.telemetry-path")

    client = FirewallClient.from_config_file(config_file) if config_file else FirewallClient()
    collector = IptablesCollector(client.save, capture, default_descriptors())
    app = create_app(collector, metrics_path)

    logger.info("Starting iptables_exporter %s", __version__)
    logger.info(
        "Capture expression %r, separator %r, command %r",
        capture.expression, capture.separator, client.config.save_command,
    )
    logger.info("Listening on %s", listen_address)
    app.run(host=host, port=port)


if __name__ == "__main__":
    main()
