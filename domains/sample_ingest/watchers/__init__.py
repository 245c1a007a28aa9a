"""
Sample Ingest Watchers

- events.py - watchdog observer bridged onto an asyncio queue
"""
