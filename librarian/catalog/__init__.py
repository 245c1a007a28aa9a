"""Catalog store: durable record of every ingested sample."""
