"""
cli.py — Click CLI entrypoint for the merchant branch-count backfill.

Usage:
    merchant-backfill run
    merchant-backfill --config prod.env run --input retail.csv
    merchant-backfill run --dry-run
    merchant-backfill check

Exit status of `run`:
    0  every record handled (updated, already set or not found)
    1  store unreachable or misconfigured; nothing processed
    2  input aborted on a bad line, or some records failed
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from merchant_backfill.config import Settings, load_settings
from merchant_backfill.db import StoreConnectionError, create_store_engine
from merchant_backfill.loaders.merchant_gateway import MerchantGateway, StoreError
from merchant_backfill.pipelines.branch_count import run_backfill
from merchant_backfill.utils.logging import configure_logging, get_logger

log = get_logger(__name__)

EXIT_OK = 0
EXIT_STORE_ERROR = 1
EXIT_PARTIAL = 2


class ConfigurationError(click.ClickException):
    """Settings failed validation; nothing was processed."""

    exit_code = EXIT_STORE_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid configuration: {message}")


def _settings(ctx: click.Context, **overrides: object) -> Settings:
    try:
        return load_settings(ctx.obj["config"], **overrides)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Env file with settings (default: nearest .env)",
)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level (default: LOG_LEVEL or INFO)",
)
@click.option(
    "--log-format",
    default=None,
    type=click.Choice(["json", "console"]),
    help="Log renderer (default: LOG_FORMAT or console)",
)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Path | None,
    log_level: str | None,
    log_format: str | None,
) -> None:
    """Fill merchant.branch_count from a retailer file where it is unset."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config_path
    settings = _settings(ctx, log_level=log_level, log_format=log_format)
    configure_logging(settings.log_level, settings.log_format)


@main.command()
@click.option(
    "--input",
    "input_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Retailer file (default: INPUT_PATH)",
)
@click.option("--database-url", default=None, help="SQLAlchemy URL (default: DATABASE_URL)")
@click.option("--dry-run", is_flag=True, help="Look every retailer up but write nothing")
@click.pass_context
def run(
    ctx: click.Context,
    input_path: Path | None,
    database_url: str | None,
    dry_run: bool,
) -> None:
    """Run the backfill over the whole input file."""
    settings = _settings(ctx, input_path=input_path, database_url=database_url)
    log.info("cli_run", input_path=str(settings.input_path), dry_run=dry_run)

    try:
        result = asyncio.run(run_backfill(settings, dry_run=dry_run))
    except StoreConnectionError as exc:
        click.echo(f"Store unavailable: {exc}", err=True)
        sys.exit(EXIT_STORE_ERROR)

    click.echo(
        f"{result.status}: read={result.records_read} updated={result.updated} "
        f"already_set={result.already_set} not_found={result.not_found} "
        f"dry_run={result.dry_run} failed={result.failed}"
    )
    if result.input_error:
        click.echo(f"Input stopped early: {result.input_error}", err=True)

    sys.exit(EXIT_OK if result.status == "success" else EXIT_PARTIAL)


@main.command()
@click.option("--database-url", default=None, help="SQLAlchemy URL (default: DATABASE_URL)")
@click.pass_context
def check(ctx: click.Context, database_url: str | None) -> None:
    """Check the store is reachable and show how many rows still need a value."""
    settings = _settings(ctx, database_url=database_url)
    store_config = settings.store_config()

    try:
        engine = create_store_engine(settings.database_url, store_config)
    except StoreConnectionError as exc:
        click.echo(f"Store unavailable: {exc}", err=True)
        sys.exit(EXIT_STORE_ERROR)

    try:
        gateway = MerchantGateway(engine, store_config)
        gateway.ping()
        unset = gateway.count_unset()
    except (StoreConnectionError, StoreError) as exc:
        click.echo(f"Store unavailable: {exc}", err=True)
        sys.exit(EXIT_STORE_ERROR)
    finally:
        engine.dispose()

    click.echo(f"{store_config.table_name}: {unset} rows without {store_config.branch_count_column}")


if __name__ == "__main__":
    main()
