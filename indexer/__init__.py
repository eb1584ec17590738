"""Indexer process: runs the ingestion pipeline for the airdrop contract."""
