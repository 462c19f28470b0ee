"""
pipelines/branch_count.py — Merchant branch-count backfill pipeline.

Source: delimited file of (retailer_id, branch_count) pairs.
Target: merchant.branch_count, written only where it is currently NULL.

Shape of a run:

    producer ──put──▶ handoff (Queue, maxsize=1) ──get──▶ consumer ──▶ MerchantGateway
       │                                                     │
       └── reads MerchantCsvSource                           └── one round trip per record

The coordinator waits for the producer, closes the handoff, waits for the
consumer to drain it, and returns a single BackfillResult.

  - Records reach the store in file order (one producer, one consumer).
  - The bounded handoff gives backpressure: the producer never runs more
    than one record ahead of the consumer's queue.
  - A bad line stops the producer; records already handed off still finish.
  - A failed store call for one record is logged and counted; the batch
    continues.

There is no resume. Re-running the whole file is the recovery path, which is
safe because the gateway never overwrites a present branch_count.

Usage:
    from merchant_backfill.config import load_settings
    from merchant_backfill.pipelines.branch_count import run_backfill

    result = asyncio.run(run_backfill(load_settings()))
    print(result.status, result.updated)
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NoReturn

from merchant_backfill.config import Settings
from merchant_backfill.db import create_store_engine
from merchant_backfill.loaders.merchant_gateway import MerchantGateway, StoreError
from merchant_backfill.models import ApplyOutcome, MerchantUpdateRecord
from merchant_backfill.sources.merchant_csv import MerchantCsvSource, RecordSourceError
from merchant_backfill.utils.logging import get_logger

log = get_logger(__name__)

MAX_RECORDED_ERRORS = 100


class PipelineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    DONE = "done"


@dataclass
class BackfillResult:
    """Summary of one backfill run."""

    records_read: int = 0
    records_processed: int = 0
    updated: int = 0
    already_set: int = 0
    not_found: int = 0
    dry_run: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    input_error: str | None = None
    duration_ms: int = 0

    @property
    def complete(self) -> bool:
        """True when the whole input file was read."""
        return self.input_error is None

    @property
    def status(self) -> str:
        if not self.complete:
            return "aborted"
        if self.failed:
            return "partial_failure"
        return "success"

    def count(self, outcome: ApplyOutcome) -> None:
        self.records_processed += 1
        if outcome is ApplyOutcome.UPDATED:
            self.updated += 1
        elif outcome is ApplyOutcome.ALREADY_SET:
            self.already_set += 1
        elif outcome is ApplyOutcome.NOT_FOUND:
            self.not_found += 1
        elif outcome is ApplyOutcome.DRY_RUN:
            self.dry_run += 1

    def count_failure(self, message: str) -> None:
        self.records_processed += 1
        self.failed += 1
        if len(self.errors) < MAX_RECORDED_ERRORS:
            self.errors.append(message)


class BranchCountBackfill:
    """
    Single-producer / single-consumer pipeline from a record source to the
    merchant gateway. An instance runs once.
    """

    def __init__(self, source: MerchantCsvSource, gateway: MerchantGateway) -> None:
        self._source = source
        self._gateway = gateway
        self._state = PipelineState.IDLE

    @property
    def state(self) -> PipelineState:
        return self._state

    def _transition(self, state: PipelineState) -> None:
        log.debug("pipeline_state", previous=self._state.value, state=state.value)
        self._state = state

    # ------------------------------------------------------------------
    # Coordinator
    # ------------------------------------------------------------------

    async def run(self) -> BackfillResult:
        """
        Run producer and consumer to completion.

        Returns:
            BackfillResult. Input errors are reported on it, not raised.

        Raises:
            RuntimeError: the instance already ran.
            Any unexpected exception from the producer (after the consumer
            has drained) or from the consumer (after the producer is
            cancelled).
        """
        if self._state is not PipelineState.IDLE:
            raise RuntimeError(f"pipeline already {self._state.value}")

        result = BackfillResult()
        t0 = time.monotonic()
        handoff: asyncio.Queue[MerchantUpdateRecord | None] = asyncio.Queue(maxsize=1)

        log.info("backfill_start")
        consumer = asyncio.create_task(self._consume(handoff, result), name="backfill-consumer")
        producer = asyncio.create_task(self._produce(handoff, result), name="backfill-producer")
        self._transition(PipelineState.RUNNING)

        await asyncio.wait({producer, consumer}, return_when=asyncio.FIRST_COMPLETED)
        if consumer.done():
            # The consumer only returns after end of input, so it crashed.
            await self._abandon(consumer, producer)

        close = asyncio.create_task(handoff.put(None), name="backfill-close")
        await asyncio.wait({close, consumer}, return_when=asyncio.FIRST_COMPLETED)
        if not close.done():
            # Consumer died with a record still in the handoff.
            await self._abandon(consumer, close, producer)

        self._transition(PipelineState.DRAINING)
        try:
            await consumer
        finally:
            self._transition(PipelineState.DONE)

        result.duration_ms = int((time.monotonic() - t0) * 1000)
        producer.result()

        log.info(
            "backfill_complete",
            status=result.status,
            records_read=result.records_read,
            updated=result.updated,
            already_set=result.already_set,
            not_found=result.not_found,
            dry_run=result.dry_run,
            failed=result.failed,
            input_error=result.input_error,
            duration_ms=result.duration_ms,
        )
        return result

    async def _abandon(self, consumer: asyncio.Task[None], *others: asyncio.Task[Any]) -> NoReturn:
        """Cancel the remaining tasks and re-raise the consumer's failure."""
        for task in others:
            task.cancel()
        await asyncio.gather(*others, return_exceptions=True)
        self._transition(PipelineState.DONE)
        consumer.result()
        raise RuntimeError("consumer stopped before end of input")

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def _produce(
        self,
        handoff: asyncio.Queue[MerchantUpdateRecord | None],
        result: BackfillResult,
    ) -> None:
        with contextlib.closing(self._source.iter_records()) as records:
            try:
                for record in records:
                    result.records_read += 1
                    await handoff.put(record)
            except RecordSourceError as exc:
                result.input_error = str(exc)
                log.error(
                    "producer_stopped",
                    records_read=result.records_read,
                    error=str(exc),
                )
                return
        log.info("producer_done", records_read=result.records_read)

    async def _consume(
        self,
        handoff: asyncio.Queue[MerchantUpdateRecord | None],
        result: BackfillResult,
    ) -> None:
        while True:
            record = await handoff.get()
            if record is None:
                break

            log.debug(
                "record_received",
                retailer_id=record.retailer_id,
                line_number=record.line_number,
            )
            try:
                outcome = await asyncio.to_thread(
                    self._gateway.apply_branch_count,
                    record.retailer_id,
                    record.branch_count,
                )
            except StoreError as exc:
                log.error(
                    "record_failed",
                    retailer_id=record.retailer_id,
                    line_number=record.line_number,
                    error=str(exc),
                )
                result.count_failure(f"line {record.line_number}: {exc}")
                continue
            result.count(outcome)

        log.info("consumer_done", records_processed=result.records_processed)


async def run_backfill(
    settings: Settings,
    *,
    dry_run: bool = False,
    **engine_kwargs: Any,
) -> BackfillResult:
    """
    Run the branch-count backfill end-to-end.

    The store is checked before the input file is opened, so an unreachable
    store fails the run without reading any record.

    Args:
        settings:        Loaded Settings.
        dry_run:         Look every retailer up but write nothing.
        **engine_kwargs: Forwarded to create_store_engine().

    Returns:
        BackfillResult.

    Raises:
        StoreConnectionError: the store cannot be configured or reached.
    """
    store_config = settings.store_config()
    engine = create_store_engine(settings.database_url, store_config, **engine_kwargs)
    try:
        gateway = MerchantGateway(engine, store_config, dry_run=dry_run)
        gateway.ping()
        source = MerchantCsvSource(settings.source_config())
        return await BranchCountBackfill(source, gateway).run()
    finally:
        engine.dispose()
