# Message-bus boundary: batched delivery of records to a handler

import asyncio
import logging
from collections import deque
from typing import Iterable, List, Optional, Protocol

from .records import RawLogRecord

logger = logging.getLogger(__name__)


class MessagesReader:
	"""Records delivered to one handler invocation.

	``get_next`` pops one record; ``get_all`` drains everything still
	pending and returns an empty list once the reader is exhausted.
	"""

	def __init__(self, messages: Iterable[RawLogRecord]):
		self._pending = deque(messages)

	def __len__(self):
		return len(self._pending)

	def get_next(self) -> Optional[RawLogRecord]:
		if not self._pending:
			return None
		return self._pending.popleft()

	def get_all(self) -> List[RawLogRecord]:
		drained = list(self._pending)
		self._pending.clear()
		return drained


class SubscriberCallback(Protocol):
	async def handle_messages(self, reader: MessagesReader) -> None:
		...


class Subscription:
	"""In-process topic queue feeding a subscriber callback.

	Each delivery hands the callback whatever is immediately available, up to
	``max_batch`` records. Records count as consumed once the callback
	returns; an exception from the callback stops ``run`` and propagates.
	"""

	def __init__(self, max_batch: int = 1000, maxsize: int = 0):
		self.max_batch = max_batch
		self._queue: "asyncio.Queue[Optional[RawLogRecord]]" = asyncio.Queue(maxsize)
		self._closed = False

	@property
	def closed(self) -> bool:
		return self._closed

	async def publish(self, record: RawLogRecord) -> None:
		if self._closed:
			raise RuntimeError("Subscription is closed")
		await self._queue.put(record)

	async def close(self) -> None:
		"""Stop delivery once everything already published has been handled."""
		if not self._closed:
			self._closed = True
			await self._queue.put(None)

	async def next_batch(self) -> List[RawLogRecord]:
		"""Wait for at least one record, then take what is ready without blocking.

		Returns an empty list when the subscription has been closed and drained.
		"""
		first = await self._queue.get()
		if first is None:
			return []
		batch = [first]
		while len(batch) < self.max_batch:
			try:
				record = self._queue.get_nowait()
			except asyncio.QueueEmpty:
				break
			if record is None:
				# Keep the close marker for the next call
				self._queue.put_nowait(None)
				break
			batch.append(record)
		return batch

	async def run(self, callback: SubscriberCallback) -> int:
		"""Deliver batches to ``callback`` until closed. Returns records delivered."""
		delivered = 0
		while True:
			batch = await self.next_batch()
			if not batch:
				break
			logger.debug("Delivering %d record(s)", len(batch))
			await callback.handle_messages(MessagesReader(batch))
			delivered += len(batch)
		return delivered
