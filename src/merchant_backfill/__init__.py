"""
merchant_backfill — one-shot backfill of merchant.branch_count from a retailer file.

Architecture:
  sources/     — streaming reader for the (retailer_id, branch_count) file
  loaders/     — NULL-guarded branch_count writes against the merchant table
  pipelines/   — producer/consumer coordinator wiring source -> loader
  utils/       — structlog configuration
  db.py        — SQLAlchemy engine with a bounded connection pool
  config.py    — pydantic-settings Settings

Quick start:
    import asyncio
    from merchant_backfill.config import load_settings
    from merchant_backfill.pipelines.branch_count import run_backfill

    result = asyncio.run(run_backfill(load_settings(), dry_run=True))

CLI:
    merchant-backfill run --input retail.csv
    merchant-backfill check
"""

__version__ = "0.1.0"
