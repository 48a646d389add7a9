import os
import sys

import pytest

PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")
if SRC_DIR not in sys.path:
	sys.path.insert(0, SRC_DIR)

from tradelogs.opensearch.client import StoreResponse
from tradelogs.records import DataItem, RawLogRecord
from tradelogs.rotation import partition_id


class FakeStoreClient:
	"""Stands in for LightweightOpenSearchClient and records every call."""

	def __init__(self, create_response=None, write_response=None):
		self.create_response = create_response or StoreResponse(200, {"acknowledged": True})
		self.write_response = write_response or StoreResponse(200, {"errors": False, "items": []})
		self.created = []
		self.writes = []

	def get_index_name_with_pattern(self, base_name, pattern, now=None):
		return partition_id(base_name, pattern, now)

	def create_index_mapping(self, index, body):
		self.created.append((index, body))
		return self.create_response

	def write_entities(self, index, docs):
		self.writes.append((index, list(docs)))
		return self.write_response


@pytest.fixture
def fake_client():
	return FakeStoreClient()


def make_record(operation_id="O", data=None, timestamp_micros=1700000000000000):
	return RawLogRecord(
		timestamp_micros=timestamp_micros,
		trader_id="T1",
		account_id="A1",
		component="C",
		process_id="P",
		operation_id=operation_id,
		message="m",
		data=[DataItem(key=k, value=v) for k, v in (data or [])],
	)
