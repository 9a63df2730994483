"""Command line entry point.

Usage:
    marzban-exporter                     # Poll the panel and serve /metrics
    marzban-exporter --port 9101         # Override the scrape port
    marzban-exporter --once              # Run one refresh cycle and print the metrics

Connection settings are read from the environment (URL, USERNAME, PASSWORD,
UPDATE_INTERVAL), which is first filled from a .env file in the working
directory or its parents; see marzban_exporter.config.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import sys
from pathlib import Path

import click
from dotenv import find_dotenv, load_dotenv

from marzban_exporter import __version__
from marzban_exporter.client import MarzbanClient
from marzban_exporter.config import ExporterConfig, load_config, validate_config
from marzban_exporter.errors import ConfigurationError
from marzban_exporter.metrics import MarzbanMetrics
from marzban_exporter.scheduler import RefreshScheduler
from marzban_exporter.server import create_app, serve

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Exit status for configuration errors
EXIT_CONFIG_ERROR = 2


def configure_logging(level: str) -> None:
    """Configure root logging for the exporter process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    # aiohttp logs every scrape at INFO
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def build_client(config: ExporterConfig) -> MarzbanClient:
    return MarzbanClient(
        config.url,
        config.username,
        config.password,
        timeout=config.request_timeout,
    )


async def run_exporter(config: ExporterConfig) -> None:
    """Start the refresh loop and serve metrics until cancelled."""
    client = build_client(config)
    metrics = MarzbanMetrics()
    scheduler = RefreshScheduler(client, metrics, interval=config.update_interval)
    app = create_app(metrics, scheduler)

    logger.info(
        f"Polling {config.url} every {config.update_interval}s "
        f"(marzban-exporter {__version__})"
    )

    await scheduler.start()
    try:
        await serve(app, config.host, config.port)
    finally:
        await scheduler.stop()


async def run_once(config: ExporterConfig) -> tuple[bool, bytes]:
    """Run a single refresh cycle.

    Returns:
        Whether the cycle succeeded, and the rendered metrics.
    """
    metrics = MarzbanMetrics()
    scheduler = RefreshScheduler(build_client(config), metrics, interval=config.update_interval)
    ok = await scheduler.refresh_once()
    return ok, metrics.render()


@click.command()
@click.option(
    "-c", "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to a TOML config file",
)
@click.option("--host", help="Bind address of the scrape endpoint")
@click.option("--port", type=int, help="Port of the scrape endpoint")
@click.option("--interval", type=float, help="Seconds between refresh cycles")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Logging level",
)
@click.option(
    "--once",
    is_flag=True,
    help="Run one refresh cycle, print the metrics and exit",
)
@click.version_option(version=__version__, prog_name="marzban-exporter")
def cli(
    config_path: Path | None,
    host: str | None,
    port: int | None,
    interval: float | None,
    log_level: str | None,
    once: bool,
) -> None:
    """Prometheus exporter for the Marzban panel.

    Polls the panel API for node, system, core and user statistics and
    serves them on /metrics.
    """
    overrides = {
        "host": host,
        "port": port,
        "update_interval": interval,
        "log_level": log_level.upper() if log_level else None,
    }

    # Variables already in the environment win over the .env file
    load_dotenv(find_dotenv(usecwd=True))

    try:
        config = load_config(config_path=config_path)
        config = dataclasses.replace(
            config, **{k: v for k, v in overrides.items() if v is not None}
        )
        validate_config(config)
    except ConfigurationError as e:
        click.secho(f"Configuration error: {e}", fg="red", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    configure_logging(config.log_level)

    if once:
        ok, output = asyncio.run(run_once(config))
        click.echo(output.decode("utf-8"), nl=False)
        sys.exit(0 if ok else 1)

    try:
        asyncio.run(run_exporter(config))
    except KeyboardInterrupt:
        logger.info("Shutting down")


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
