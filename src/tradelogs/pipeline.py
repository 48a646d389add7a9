# Ingestion pipeline: drain -> rotate -> transform -> write -> report

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .bus import MessagesReader
from .errors import MalformedValueError, ReservedFieldError
from .initializer import ensure_partition
from .records import RawLogRecord
from .rotation import RotationPattern, RotationState
from .transform import transform

logger = logging.getLogger(__name__)


class TradeLogPipeline:
	"""Subscriber callback that ships trade-log records into rotated indices.

	The rotation state is injected so its lifetime is explicit; this pipeline
	is its only writer. A malformed dynamic value either fails the whole
	batch (``on_malformed="fail"``) or drops just that record (``"skip"``).
	A write rejected by the store is logged and the batch still counts as
	consumed.
	"""

	def __init__(
		self,
		client,
		env_source: str,
		index_base: str,
		pattern: RotationPattern = RotationPattern.DAY,
		rotation_state: Optional[RotationState] = None,
		batch_mode: str = "all",
		on_malformed: str = "fail",
		clock: Optional[Callable[[], datetime]] = None,
	):
		self.client = client
		self.env_source = env_source
		self.index_base = index_base
		self.pattern = pattern
		self.rotation_state = rotation_state or RotationState()
		self.batch_mode = batch_mode
		self.on_malformed = on_malformed
		self._clock = clock

	@classmethod
	def from_config(cls, client, cfg, rotation_state=None):
		return cls(
			client,
			env_source=cfg.env_source,
			index_base=cfg.index_base,
			pattern=cfg.rotation,
			rotation_state=rotation_state,
			batch_mode=cfg.batch_mode,
			on_malformed=cfg.on_malformed,
		)

	def _now(self) -> Optional[datetime]:
		return self._clock() if self._clock else None

	def _drain(self, reader: MessagesReader) -> List[RawLogRecord]:
		if self.batch_mode == "single":
			record = reader.get_next()
			return [record] if record is not None else []
		return reader.get_all()

	async def handle_messages(self, reader: MessagesReader) -> None:
		while True:
			records = self._drain(reader)
			if not records:
				break
			await self.process_batch(records)

	async def rotate(self) -> str:
		"""Return the current partition, initializing it on first sight."""
		state = self.rotation_state
		async with state.lock:
			current = self.client.get_index_name_with_pattern(self.index_base, self.pattern, self._now())
			if state.needs_init(current):
				created = await asyncio.to_thread(ensure_partition, self.client, current)
				if not created:
					logger.warning(
						"Index '%s' may not exist; it will not be re-initialized until the next rotation",
						current,
					)
				# Advanced whether or not creation succeeded
				state.advance(current)
			return current

	def transform_batch(self, records: List[RawLogRecord]) -> List[Dict[str, Any]]:
		docs = []
		for record in records:
			try:
				docs.append(transform(record, self.env_source))
			except (MalformedValueError, ReservedFieldError) as e:
				if self.on_malformed != "skip":
					raise
				logger.warning(
					"Skipping record operation_id=%s trader_id=%s: %s",
					record.operation_id,
					record.trader_id,
					e,
				)
		return docs

	async def process_batch(self, records: List[RawLogRecord]) -> bool:
		"""Run one drained batch through the pipeline. Returns True if the store accepted it."""
		index = await self.rotate()
		docs = await asyncio.to_thread(self.transform_batch, records)
		if not docs:
			return True
		response = await asyncio.to_thread(self.client.write_entities, index, docs)
		return self._report(index, docs, response)

	def _report(self, index: str, docs: List[Dict[str, Any]], response) -> bool:
		if not response.ok:
			logger.error(
				"Write of %d document(s) to '%s' failed: status %s, response %s, payload %s",
				len(docs),
				index,
				response.status,
				response.body,
				json.dumps(docs),
			)
			return False
		if response.body.get("errors"):
			for item, doc in zip(response.body.get("items", []), docs):
				error = item.get("index", {}).get("error")
				if error:
					logger.warning("Document rejected by '%s': %s, payload %s", index, error, json.dumps(doc))
		return True
