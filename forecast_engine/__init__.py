"""
Forecast aggregation and adjustment engine.

Turns a read-only snapshot of CRM deals into bucketed pipeline totals, a
health-adjusted forecast compared against the CRM forecast, quarter-over-
quarter momentum, and direct vs partner channel scoring.
"""

__version__ = "0.1.0"
