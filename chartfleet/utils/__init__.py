"""Utility modules for ChartFleet."""
