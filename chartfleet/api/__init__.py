"""
Status API for ChartFleet.
"""

from chartfleet.api.routes import create_app, create_routes

__all__ = ["create_app", "create_routes"]
