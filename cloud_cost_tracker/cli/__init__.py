"""
Command-line interface for Cloud Cost Tracker.
"""
