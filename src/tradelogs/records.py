# Inbound trade-log records as delivered by the bus

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from .errors import InvalidRecordError

_TEXT_FIELDS = ("trader_id", "account_id", "component", "process_id", "operation_id", "message")


@dataclass
class DataItem:
	"""One caller-supplied key with a YAML-encoded value."""
	key: str
	value: str


@dataclass
class RawLogRecord:
	"""A trade-activity log record.

	``data`` keeps delivery order; keys may repeat.
	"""
	timestamp_micros: int
	trader_id: str
	account_id: str
	component: str
	process_id: str
	operation_id: str
	message: str
	data: List[DataItem] = field(default_factory=list)

	@classmethod
	def from_dict(cls, payload: Mapping[str, Any]) -> "RawLogRecord":
		"""Build a record from a decoded JSON envelope."""
		if not isinstance(payload, Mapping):
			raise InvalidRecordError(f"Record must be an object, got {type(payload).__name__}")
		timestamp = payload.get("timestamp_micros")
		# bool is an int subclass but never a timestamp
		if isinstance(timestamp, bool) or not isinstance(timestamp, int):
			raise InvalidRecordError("Field 'timestamp_micros' must be an integer")
		values: Dict[str, str] = {}
		for name in _TEXT_FIELDS:
			value = payload.get(name)
			if not isinstance(value, str):
				raise InvalidRecordError(f"Field '{name}' must be a string")
			values[name] = value
		return cls(timestamp_micros=timestamp, data=_parse_data(payload.get("data")), **values)

	def to_dict(self) -> Dict[str, Any]:
		doc: Dict[str, Any] = {"timestamp_micros": self.timestamp_micros}
		for name in _TEXT_FIELDS:
			doc[name] = getattr(self, name)
		doc["data"] = [{"key": item.key, "value": item.value} for item in self.data]
		return doc


def _parse_data(raw: Any) -> List[DataItem]:
	if raw is None:
		return []
	if not isinstance(raw, list):
		raise InvalidRecordError("Field 'data' must be a list of {key, value} objects")
	items = []
	for index, entry in enumerate(raw):
		if not isinstance(entry, Mapping):
			raise InvalidRecordError(f"data[{index}] must be an object")
		key = entry.get("key")
		value = entry.get("value")
		if not isinstance(key, str) or not isinstance(value, str):
			raise InvalidRecordError(f"data[{index}] needs string 'key' and 'value'")
		items.append(DataItem(key=key, value=value))
	return items
