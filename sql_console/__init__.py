"""Client-side orchestration for a remote CSV-to-SQL data service."""

__version__ = "0.1.0"
