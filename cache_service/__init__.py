"""Ledger cache service: cached prices, token metadata, FLP listing and wallet tiers."""
