"""Route S3 operations between a primary and a secondary object store."""

__version__ = "0.1.0"
__all__ = ["config", "router"]