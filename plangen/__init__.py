"""plangen - background generation of personalized multi-week training plans."""

__version__ = "0.4.0"
