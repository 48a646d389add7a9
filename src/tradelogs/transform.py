# Document transformer: RawLogRecord -> flat index document

from typing import Any, Dict

from .errors import ReservedFieldError
from .records import RawLogRecord
from .values import canonical_text, decode_value

DYNAMIC_PREFIX = "dyn_"

FIXED_FIELDS = (
	"date_time_unix_millis",
	"trader_id",
	"account_id",
	"component",
	"process_id",
	"operation_id",
	"message",
	"env_source",
)


def micros_to_millis(micros: int) -> int:
	"""Integer-divide by 1000, truncating toward zero."""
	if micros < 0:
		return -(-micros // 1000)
	return micros // 1000


def dynamic_field_name(key: str) -> str:
	"""Name of the field a data key is stored under.

	Dots become underscores so a key can never open an object path inside the
	dyn_ namespace (``a.b`` would otherwise clash with a plain ``a``). A blank
	key would name the bare prefix and is rejected.
	"""
	if not key.strip():
		raise ReservedFieldError(f"Data key {key!r} would name the bare '{DYNAMIC_PREFIX}' prefix")
	return f"{DYNAMIC_PREFIX}{key.replace('.', '_')}"


def transform(record: RawLogRecord, env_source: str) -> Dict[str, Any]:
	"""Flatten one record into the document stored in the index.

	Every data item becomes a ``dyn_<key>`` text field holding the canonical
	form of its decoded value; a repeated key keeps the last value. Raises
	MalformedValueError if any value fails to decode and ReservedFieldError
	for a blank key.
	"""
	doc: Dict[str, Any] = {
		"date_time_unix_millis": micros_to_millis(record.timestamp_micros),
		"trader_id": record.trader_id,
		"account_id": record.account_id,
		"component": record.component,
		"process_id": record.process_id,
		"operation_id": record.operation_id,
		"message": record.message,
		"env_source": env_source.upper(),
	}
	for item in record.data:
		doc[dynamic_field_name(item.key)] = canonical_text(decode_value(item.value, key=item.key))
	return doc
