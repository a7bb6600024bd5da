"""FinFlow - transaction retrieval and attachment engine."""

__version__ = "1.0.0"
