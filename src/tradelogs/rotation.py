# Index rotation: partition naming and the remembered current partition

import asyncio
import enum
from datetime import datetime, timezone
from typing import Optional


class RotationPattern(enum.Enum):
	"""How often a new index partition is started. Boundaries are UTC."""
	HOUR = "hour"
	DAY = "day"
	MONTH = "month"
	YEAR = "year"

	@classmethod
	def parse(cls, value: str) -> "RotationPattern":
		text = (value or "").strip().lower()
		if text == "daily":
			text = "day"
		for pattern in cls:
			if pattern.value == text:
				return pattern
		choices = ", ".join(p.value for p in cls)
		raise ValueError(f"Unknown rotation pattern '{value}' (expected one of {choices})")


_SUFFIX_FORMATS = {
	RotationPattern.HOUR: "%Y.%m.%d.%H",
	RotationPattern.DAY: "%Y.%m.%d",
	RotationPattern.MONTH: "%Y.%m",
	RotationPattern.YEAR: "%Y",
}


def _utc(now: Optional[datetime]) -> datetime:
	if now is None:
		return datetime.now(timezone.utc)
	if now.tzinfo is None:
		# Naive datetimes are taken to already be UTC
		return now.replace(tzinfo=timezone.utc)
	return now.astimezone(timezone.utc)


def partition_id(base_name: str, pattern: RotationPattern, now: Optional[datetime] = None) -> str:
	"""Return the partition (index) name for ``now`` under ``pattern``.

	Two instants map to the same id exactly when they fall in the same UTC
	hour/day/month/year, e.g. ``trade_log_prod-2024.03.09`` for DAY.
	"""
	suffix = _utc(now).strftime(_SUFFIX_FORMATS[pattern])
	return f"{base_name}-{suffix}"


class RotationState:
	"""The partition already initialized during this process lifetime.

	Owned by a single pipeline. ``lock`` guards the read-compare-write of
	``last_known_partition_id``; callers must hold it while deciding whether
	to initialize and while advancing the state.
	"""

	def __init__(self, last_known_partition_id: Optional[str] = None):
		self.last_known_partition_id = last_known_partition_id
		self.lock = asyncio.Lock()

	def needs_init(self, current_partition_id: str) -> bool:
		return self.last_known_partition_id != current_partition_id

	def advance(self, current_partition_id: str) -> None:
		self.last_known_partition_id = current_partition_id
