"""
loaders/merchant_gateway.py — Conditional branch_count writes against the merchant table.

The gateway only ever moves branch_count from NULL to a value:

  - no row for the retailer       → nothing to do   (ApplyOutcome.NOT_FOUND)
  - branch_count already present  → nothing to do   (ApplyOutcome.ALREADY_SET)
  - branch_count is NULL          → UPDATE that one column (ApplyOutcome.UPDATED)

Every call is its own round trip and its own transaction, so re-running a
whole file is safe: rows filled by an earlier run are left alone.

Usage:
    from merchant_backfill.db import create_store_engine
    from merchant_backfill.loaders.merchant_gateway import MerchantGateway

    engine = create_store_engine(settings.database_url, settings.store_config())
    gateway = MerchantGateway(engine, settings.store_config())
    gateway.ping()
    outcome = gateway.apply_branch_count(42, 7)
"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from merchant_backfill.config import StoreConfig
from merchant_backfill.db import StoreConnectionError
from merchant_backfill.models import ApplyOutcome, MerchantStoreRow
from merchant_backfill.utils.logging import get_logger

log = get_logger(__name__)


class StoreError(Exception):
    """A lookup or update against the merchant table failed."""

    def __init__(self, message: str, retailer_id: int | None = None) -> None:
        super().__init__(message)
        self.retailer_id = retailer_id


def build_merchant_table(
    config: StoreConfig, metadata: sa.MetaData | None = None
) -> sa.Table:
    """
    Describe the merchant table with the configured names.

    expire_at is declared so the table can be created in tests; the gateway
    never selects or writes it.
    """
    return sa.Table(
        config.table_name,
        metadata if metadata is not None else sa.MetaData(),
        sa.Column(config.key_column, sa.BigInteger, primary_key=True, autoincrement=False),
        sa.Column(config.branch_count_column, sa.Integer, nullable=True),
        sa.Column("expire_at", sa.DateTime, nullable=True),
    )


class MerchantGateway:
    """
    Point lookups and NULL-guarded updates of merchant.branch_count.

    Safe to share between threads: each call checks a connection out of the
    engine's pool and returns it before returning.
    """

    def __init__(
        self,
        engine: Engine,
        config: StoreConfig,
        *,
        dry_run: bool = False,
    ) -> None:
        self._engine = engine
        self._config = config
        self._dry_run = dry_run
        self._table = build_merchant_table(config)
        self._key = self._table.c[config.key_column]
        self._branch_count = self._table.c[config.branch_count_column]

    @property
    def table(self) -> sa.Table:
        return self._table

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> None:
        """
        Check the store is reachable.

        Raises:
            StoreConnectionError: the connection or the probe query failed.
        """
        try:
            with self._engine.connect() as conn:
                conn.execute(sa.text("SELECT 1"))
        except SQLAlchemyError as exc:
            log.error("store_ping_failed", error=str(exc))
            raise StoreConnectionError(f"cannot reach store: {exc}") from exc
        log.info("store_ping_ok", table=self._config.table_name)

    def count_unset(self) -> int:
        """Number of rows whose branch_count is still NULL."""
        stmt = (
            sa.select(sa.func.count())
            .select_from(self._table)
            .where(self._branch_count.is_(None))
        )
        try:
            with self._engine.connect() as conn:
                return int(conn.execute(stmt).scalar_one())
        except SQLAlchemyError as exc:
            raise StoreError(f"count of unset rows failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Conditional write
    # ------------------------------------------------------------------

    def fetch_row(self, retailer_id: int) -> MerchantStoreRow | None:
        """
        Look up a merchant by retailer_id.

        Raises:
            StoreError: the query failed.
        """
        stmt = (
            sa.select(
                self._key.label("retailer_id"),
                self._branch_count.label("branch_count"),
            )
            .where(self._key == retailer_id)
            .limit(1)
        )
        try:
            with self._engine.connect() as conn:
                row = conn.execute(stmt).mappings().first()
        except SQLAlchemyError as exc:
            raise StoreError(
                f"lookup failed for retailer_id={retailer_id}: {exc}", retailer_id
            ) from exc

        if row is None:
            return None
        return MerchantStoreRow.from_db_row(dict(row))

    def apply_branch_count(self, retailer_id: int, branch_count: int) -> ApplyOutcome:
        """
        Write *branch_count* for *retailer_id* if the stored value is NULL.

        Returns:
            ApplyOutcome describing what happened.

        Raises:
            StoreError: lookup or update failed. "Not found" is not an error.
        """
        rec_log = log.bind(retailer_id=retailer_id, branch_count=branch_count)

        row = self.fetch_row(retailer_id)
        if row is None:
            rec_log.info("retailer_not_found")
            return ApplyOutcome.NOT_FOUND

        if row.has_branch_count:
            rec_log.info("branch_count_already_set", current=row.branch_count)
            return ApplyOutcome.ALREADY_SET

        if self._dry_run:
            rec_log.info("branch_count_update_skipped_dry_run")
            return ApplyOutcome.DRY_RUN

        stmt = (
            sa.update(self._table)
            .where(self._key == retailer_id, self._branch_count.is_(None))
            .values({self._branch_count.name: branch_count})
        )
        try:
            with self._engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreError(
                f"update failed for retailer_id={retailer_id}: {exc}", retailer_id
            ) from exc

        if result.rowcount == 0:
            # Filled by another writer between the lookup and the update.
            rec_log.info("branch_count_already_set", concurrent_write=True)
            return ApplyOutcome.ALREADY_SET

        rec_log.info("branch_count_updated")
        return ApplyOutcome.UPDATED
