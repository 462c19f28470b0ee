"""
merchant_backfill.pipelines — End-to-end pipeline orchestrators.

    from merchant_backfill.pipelines.branch_count import run_backfill

    result = await run_backfill(settings, dry_run=True)
"""
