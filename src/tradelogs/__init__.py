"""Ship trade-activity log records into daily OpenSearch indices."""

__version__ = "0.1.0"
