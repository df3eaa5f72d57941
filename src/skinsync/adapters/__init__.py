"""Adapters connecting the reconciliation core to providers and storage."""
