# Exception hierarchy for tradelogs


class TradeLogsError(Exception):
	"""Base exception for tradelogs."""
	pass


class ConfigError(TradeLogsError):
	"""Raised when a configuration value is not recognized."""
	pass


class InvalidRecordError(TradeLogsError):
	"""Raised when an inbound envelope is not a valid trade-log record."""
	pass


class MalformedValueError(TradeLogsError):
	"""Raised when a dynamic data value cannot be decoded."""

	def __init__(self, key, message):
		super().__init__(f"Malformed value for data key '{key}': {message}")
		self.key = key


class ReservedFieldError(TradeLogsError):
	"""Raised when a dynamic field name would overwrite a fixed field."""
	pass
