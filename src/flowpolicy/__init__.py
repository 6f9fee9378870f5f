"""flowpolicy — least-privilege network policies from observed pod traffic."""

__version__ = "0.1.0"
