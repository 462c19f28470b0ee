"""
merchant_backfill.loaders — writers against the relational store.

  MerchantGateway — conditional branch_count update, one round trip per record
"""

from merchant_backfill.loaders.merchant_gateway import MerchantGateway, StoreError

__all__ = ["MerchantGateway", "StoreError"]
