"""
Sample Ingest Collectors

Long-running services that consume directory events:
- pipeline.py - Event consumer wiring pairing, dedup, relocation and cleanup
"""
