"""
Storage layer for Cloud Cost Tracker.

SQLite persistence for usage events, rollups and tracking policies.
"""
