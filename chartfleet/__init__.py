"""ChartFleet - Staged chart rollouts across a fleet of clusters."""

__version__ = "0.1.0"
