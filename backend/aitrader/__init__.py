"""AI Trader — technical-pattern recognition and fusion scoring core."""

__version__ = "1.0.0"
