# Lazy creation of rotated trade-log indices

import logging

from .opensearch.mappings import TRADE_LOG_INDEX_MAPPING

logger = logging.getLogger(__name__)

_ALREADY_EXISTS = "resource_already_exists_exception"


def ensure_partition(client, index: str) -> bool:
	"""Create ``index`` with the trade-log mapping (idempotent).

	Returns True when the index was created or already existed. Any other
	outcome is logged and reported as False; nothing is raised for a
	rejected request. Transport errors from the client propagate.
	"""
	response = client.create_index_mapping(index, TRADE_LOG_INDEX_MAPPING)
	if response.ok:
		logger.info("Created index '%s'", index)
		return True
	if response.error_type == _ALREADY_EXISTS:
		logger.info("Index '%s' already exists", index)
		return True
	logger.error(
		"Failed to create index '%s': status %s, response %s",
		index,
		response.status,
		response.body,
	)
	return False
