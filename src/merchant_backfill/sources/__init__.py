"""
merchant_backfill.sources — input readers.

  MerchantCsvSource — delimited (retailer_id, branch_count) file, streamed
"""

from merchant_backfill.sources.merchant_csv import (
    MerchantCsvSource,
    RecordParseError,
    RecordSourceError,
)

__all__ = ["MerchantCsvSource", "RecordParseError", "RecordSourceError"]
