"""AccuBooks automation engine: rule-based automation for the accounting platform."""

__version__ = "0.1.0"
