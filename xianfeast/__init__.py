"""XianFeast marketplace request protection and caching."""

__version__ = "0.1.0"
