# Configuration loading for tradelogs

import os

from .errors import ConfigError
from .rotation import RotationPattern

# Lazy load dotenv - only when config is first accessed
_dotenv_loaded = False
_custom_dotenv_path = None

BATCH_MODES = ("all", "single")
MALFORMED_POLICIES = ("fail", "skip")


def _getenv(name, default):
	value = os.getenv(name)
	return value if value else default


def _int(name, default, minimum=None):
	value = _getenv(name, default)
	try:
		number = int(value)
	except ValueError:
		raise ConfigError(f"{name} must be an integer (got '{value}')")
	if minimum is not None and number < minimum:
		raise ConfigError(f"{name} must be at least {minimum}")
	return number


def _choice(name, default, choices):
	value = _getenv(name, default).strip().lower()
	if value not in choices:
		raise ConfigError(f"{name} must be one of {', '.join(choices)} (got '{value}')")
	return value


class TradeLogsConfig:
	"""Loads configuration from environment variables and provides defaults."""
	def __init__(self):
		self.opensearch_url = _getenv("TRADELOGS_OPENSEARCH_URL", "http://localhost:9200").rstrip("/")
		self.opensearch_user = _getenv("TRADELOGS_OPENSEARCH_USER", "admin")
		self.opensearch_pass = _getenv("TRADELOGS_OPENSEARCH_PASS", "admin")
		self.opensearch_timeout = _int("TRADELOGS_OPENSEARCH_TIMEOUT", "30", minimum=1)
		self.env_source = _getenv("TRADELOGS_ENV_SOURCE", "dev")
		self.index_base = _getenv("TRADELOGS_INDEX_BASE", f"trade_log_{self.env_source.lower()}")
		try:
			self.rotation = RotationPattern.parse(_getenv("TRADELOGS_ROTATION", "day"))
		except ValueError as e:
			raise ConfigError(str(e))
		# Delivery / batching
		self.batch_mode = _choice("TRADELOGS_BATCH_MODE", "all", BATCH_MODES)
		self.max_batch = _int("TRADELOGS_MAX_BATCH", "1000", minimum=1)
		self.on_malformed = _choice("TRADELOGS_ON_MALFORMED", "fail", MALFORMED_POLICIES)
		self.bus_host = _getenv("TRADELOGS_BUS_HOST", "127.0.0.1")
		self.bus_port = _int("TRADELOGS_BUS_PORT", "8080", minimum=1)


def set_dotenv_path(path: str):
	"""Set a custom .env file path to load. Must be called before load_config()."""
	global _custom_dotenv_path, _dotenv_loaded
	_custom_dotenv_path = path
	_dotenv_loaded = False  # Reset to force reload with new path


def load_config() -> TradeLogsConfig:
	"""Return a config object with all settings loaded."""
	global _dotenv_loaded, _custom_dotenv_path
	if not _dotenv_loaded:
		from dotenv import load_dotenv, find_dotenv
		# Check for DOTENV_PATH environment variable first
		dotenv_path = os.getenv("DOTENV_PATH") or _custom_dotenv_path
		if dotenv_path:
			# Explicit files take precedence over the inherited environment
			load_dotenv(dotenv_path, override=True)
		else:
			dotenv_path = find_dotenv(usecwd=True)
			if dotenv_path:
				load_dotenv(dotenv_path)
		_dotenv_loaded = True
	return TradeLogsConfig()
