"""Aggregation services over the upstream API client."""

from src.services.aggregation import DashboardAggregator, compute_account_stats, compute_totals

__all__ = ["DashboardAggregator", "compute_account_stats", "compute_totals"]
