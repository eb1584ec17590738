"""Airdrop event indexer application package."""
