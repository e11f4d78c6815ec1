"""Dashboard for reviewing trading-strategy experiment results."""

__version__ = "0.1.0"
