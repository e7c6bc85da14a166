"""
Core modules for Cloud Cost Tracker.

This package contains the cost model, cost calculation, tracking policy
resolution, rollup aggregation, the tracking pipeline and reporting.
"""
