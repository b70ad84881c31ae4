"""Signal-gated, risk-managed order execution core."""

__version__ = "1.0.0"
