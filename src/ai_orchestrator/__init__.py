"""Multi-backend task planning, routing, and execution."""

__version__ = "0.1.0"
