"""Campaign companion: shared room documents, combat tracker and accounts."""

__version__ = "0.3.0"
