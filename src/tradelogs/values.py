# Structured values carried in data[].value: YAML decode and canonical text

from typing import Any, Dict, List, Union

import yaml

from .errors import MalformedValueError

# The closed algebra a decoded value may take.
Scalar = Union[None, bool, int, float, str]
StructuredValue = Union[Scalar, List["StructuredValue"], Dict[Scalar, "StructuredValue"]]

_SCALAR_TYPES = (type(None), bool, int, float, str)

# Deepest sequence/mapping nesting accepted in one value
MAX_DEPTH = 64


class _ValueLoader(yaml.SafeLoader):
	"""SafeLoader that keeps timestamps as plain strings and refuses aliases."""

	def compose_node(self, parent, index):
		if self.check_event(yaml.AliasEvent):
			event = self.peek_event()
			raise yaml.composer.ComposerError(
				None, None, f"aliases are not allowed (*{event.anchor})", event.start_mark
			)
		return super().compose_node(parent, index)


# Drop the implicit timestamp resolver so dates stay text instead of datetime
_ValueLoader.yaml_implicit_resolvers = {
	first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
	for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _check(value: Any, key: str, depth: int = 0) -> StructuredValue:
	if isinstance(value, _SCALAR_TYPES):
		return value
	if depth >= MAX_DEPTH:
		raise MalformedValueError(key, f"nesting deeper than {MAX_DEPTH} levels")
	if isinstance(value, list):
		return [_check(item, key, depth + 1) for item in value]
	if isinstance(value, dict):
		checked: Dict[Scalar, StructuredValue] = {}
		for item_key, item_value in value.items():
			if not isinstance(item_key, _SCALAR_TYPES):
				raise MalformedValueError(key, f"unsupported mapping key type {type(item_key).__name__}")
			checked[item_key] = _check(item_value, key, depth + 1)
		return checked
	raise MalformedValueError(key, f"unsupported value type {type(value).__name__}")


def decode_value(text: str, key: str = "") -> StructuredValue:
	"""Decode a YAML document into the structured-value algebra.

	Raises MalformedValueError when the text is not valid YAML, uses aliases,
	nests deeper than MAX_DEPTH, or decodes to something outside the algebra
	(sets, binary, custom tags).
	"""
	try:
		value = yaml.load(text, Loader=_ValueLoader)
	except yaml.YAMLError as e:
		raise MalformedValueError(key, str(e).replace("\n", " "))
	except RecursionError:
		raise MalformedValueError(key, "nesting too deep to parse")
	return _check(value, key)


def _float_text(value: float) -> str:
	# Same float form the block dumper writes
	return yaml.safe_dump(value).split("\n", 1)[0]


def _scalar_text(value: Scalar) -> str:
	if value is None:
		return "null"
	if isinstance(value, bool):
		return "true" if value else "false"
	if isinstance(value, int):
		return str(value)
	if isinstance(value, float):
		return _float_text(value)
	return value


def canonical_text(value: StructuredValue) -> str:
	"""Render a decoded value as text for storage.

	Scalars become their bare text (strings unquoted); sequences and
	mappings become block-style YAML without a trailing newline.
	"""
	if isinstance(value, (list, dict)):
		text = yaml.safe_dump(
			value,
			default_flow_style=False,
			sort_keys=False,
			allow_unicode=True,
		)
		return text.rstrip("\n")
	return _scalar_text(value)
