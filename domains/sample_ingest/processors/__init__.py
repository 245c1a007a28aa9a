"""
Sample Ingest Processors

Processing steps for one sample unit:
- pairing.py - Binary/metadata correlation with a bounded wait
- dedup.py - Content fingerprint and catalog lookup
- metadata.py - Metadata decoding and category rules
- relocate.py - Verified copy-then-delete relocation and catalog insert
- pending.py - Commit markers and reconciliation
- retry.py - Backoff policy and error-storm pause
- cleanup.py - Source file removal
"""
