"""Multi-timeframe EMA / baseline alignment alerts for a fixed instrument universe."""

__version__ = "1.0.0"
