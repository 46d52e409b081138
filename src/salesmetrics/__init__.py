"""Sales performance metrics over multi-tenant activity data."""

__version__ = "0.1.0"
