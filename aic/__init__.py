"""aic - AI Code Connect: bridge interactive AI coding CLIs in one terminal."""

__version__ = "1.0.0"
__logo__ = "AIC²"
