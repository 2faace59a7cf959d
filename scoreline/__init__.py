"""scoreline - multi-source prediction-input engine."""

__version__ = "1.0.0"
