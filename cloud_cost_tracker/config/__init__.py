"""
Configuration for Cloud Cost Tracker.

Loads tracker settings and the cost rate table.
"""
