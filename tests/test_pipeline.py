import asyncio
import time
import logging
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeStoreClient, make_record
from tradelogs.bus import MessagesReader
from tradelogs.errors import MalformedValueError
from tradelogs.opensearch.client import StoreResponse
from tradelogs.pipeline import TradeLogPipeline
from tradelogs.rotation import RotationPattern, RotationState


class Clock:
	def __init__(self, now):
		self.now = now

	def __call__(self):
		return self.now


def _pipeline(client, clock=None, **kwargs):
	return TradeLogPipeline(
		client,
		env_source="stage",
		index_base="trade_log",
		pattern=RotationPattern.DAY,
		clock=clock or Clock(datetime(2023, 11, 14, 22, 13, tzinfo=timezone.utc)),
		**kwargs,
	)


@pytest.mark.asyncio
async def test_end_to_end_batch(fake_client):
	pipeline = _pipeline(fake_client)
	await pipeline.handle_messages(MessagesReader([make_record(data=[("note", '"hello"')])]))

	assert [index for index, _ in fake_client.created] == ["trade_log-2023.11.14"]
	assert fake_client.writes == [("trade_log-2023.11.14", [{
		"date_time_unix_millis": 1700000000000,
		"trader_id": "T1",
		"account_id": "A1",
		"component": "C",
		"process_id": "P",
		"operation_id": "O",
		"message": "m",
		"env_source": "STAGE",
		"dyn_note": "hello",
	}])]
	assert pipeline.rotation_state.last_known_partition_id == "trade_log-2023.11.14"


@pytest.mark.asyncio
async def test_second_batch_same_day_does_not_reinitialize(fake_client):
	clock = Clock(datetime(2024, 3, 9, 8, tzinfo=timezone.utc))
	pipeline = _pipeline(fake_client, clock)
	await pipeline.process_batch([make_record()])
	clock.now += timedelta(hours=15)
	await pipeline.process_batch([make_record()])
	assert len(fake_client.created) == 1
	assert len(fake_client.writes) == 2


@pytest.mark.asyncio
async def test_day_boundary_triggers_exactly_one_initialization(fake_client):
	clock = Clock(datetime(2024, 3, 9, 23, 59, tzinfo=timezone.utc))
	pipeline = _pipeline(fake_client, clock)
	await pipeline.process_batch([make_record()])
	clock.now += timedelta(minutes=2)
	await pipeline.process_batch([make_record()])
	await pipeline.process_batch([make_record()])
	assert [index for index, _ in fake_client.created] == ["trade_log-2024.03.09", "trade_log-2024.03.10"]
	assert [index for index, _ in fake_client.writes] == [
		"trade_log-2024.03.09",
		"trade_log-2024.03.10",
		"trade_log-2024.03.10",
	]


@pytest.mark.asyncio
async def test_restart_with_fresh_state_initializes_again(fake_client):
	await _pipeline(fake_client).process_batch([make_record()])
	await _pipeline(fake_client).process_batch([make_record()])
	assert len(fake_client.created) == 2


@pytest.mark.asyncio
async def test_injected_state_is_honoured(fake_client):
	state = RotationState("trade_log-2023.11.14")
	pipeline = _pipeline(fake_client, rotation_state=state)
	await pipeline.process_batch([make_record()])
	assert fake_client.created == []
	assert pipeline.rotation_state is state


@pytest.mark.asyncio
async def test_concurrent_batches_initialize_once():
	class SlowCreateClient(FakeStoreClient):
		def create_index_mapping(self, index, body):
			time.sleep(0.05)
			return super().create_index_mapping(index, body)

	client = SlowCreateClient()
	pipeline = _pipeline(client)
	await asyncio.gather(*(pipeline.process_batch([make_record(operation_id=str(i))]) for i in range(5)))
	assert len(client.created) == 1
	assert len(client.writes) == 5


@pytest.mark.asyncio
async def test_failed_initialization_still_advances_state(caplog):
	client = FakeStoreClient(create_response=StoreResponse(403, {"error": {"type": "security_exception"}}))
	pipeline = _pipeline(client)
	with caplog.at_level(logging.WARNING):
		await pipeline.process_batch([make_record()])
		await pipeline.process_batch([make_record()])
	assert len(client.created) == 1
	assert len(client.writes) == 2
	assert pipeline.rotation_state.last_known_partition_id == "trade_log-2023.11.14"
	assert "will not be re-initialized" in caplog.text


@pytest.mark.asyncio
async def test_batch_order_is_preserved(fake_client):
	records = [make_record(operation_id=str(i)) for i in range(5)]
	await _pipeline(fake_client).process_batch(records)
	_, docs = fake_client.writes[0]
	assert [doc["operation_id"] for doc in docs] == ["0", "1", "2", "3", "4"]


@pytest.mark.asyncio
async def test_drain_all_writes_one_bulk_request(fake_client):
	reader = MessagesReader([make_record(operation_id=str(i)) for i in range(3)])
	await _pipeline(fake_client).handle_messages(reader)
	assert len(fake_client.writes) == 1
	assert len(fake_client.writes[0][1]) == 3


@pytest.mark.asyncio
async def test_single_mode_writes_per_record(fake_client):
	reader = MessagesReader([make_record(operation_id=str(i)) for i in range(3)])
	await _pipeline(fake_client, batch_mode="single").handle_messages(reader)
	assert [[doc["operation_id"] for doc in docs] for _, docs in fake_client.writes] == [["0"], ["1"], ["2"]]
	assert len(fake_client.created) == 1


@pytest.mark.asyncio
async def test_malformed_value_fails_whole_batch(fake_client):
	records = [make_record(operation_id="ok"), make_record(operation_id="bad", data=[("x", "{broken: [")])]
	with pytest.raises(MalformedValueError):
		await _pipeline(fake_client).process_batch(records)
	assert fake_client.writes == []


@pytest.mark.asyncio
async def test_malformed_value_skip_policy_drops_only_that_record(fake_client, caplog):
	records = [make_record(operation_id="ok"), make_record(operation_id="bad", data=[("x", "{broken: [")])]
	with caplog.at_level(logging.WARNING, logger="tradelogs.pipeline"):
		accepted = await _pipeline(fake_client, on_malformed="skip").process_batch(records)
	assert accepted is True
	assert [doc["operation_id"] for doc in fake_client.writes[0][1]] == ["ok"]
	assert "operation_id=bad" in caplog.text


@pytest.mark.asyncio
async def test_batch_with_every_record_skipped_writes_nothing(fake_client):
	records = [make_record(data=[("x", "{broken: [")])]
	assert await _pipeline(fake_client, on_malformed="skip").process_batch(records) is True
	assert fake_client.writes == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [200, 201])
async def test_success_status_reports_nothing(status, caplog):
	client = FakeStoreClient(write_response=StoreResponse(status, {"errors": False}))
	with caplog.at_level(logging.WARNING, logger="tradelogs.pipeline"):
		assert await _pipeline(client).process_batch([make_record()]) is True
	assert caplog.records == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 429, 500, 503])
async def test_failed_write_is_logged_with_payload_and_not_raised(status, caplog):
	client = FakeStoreClient(write_response=StoreResponse(status, {"error": "nope"}))
	with caplog.at_level(logging.ERROR, logger="tradelogs.pipeline"):
		assert await _pipeline(client).process_batch([make_record(operation_id="op-77")]) is False
	assert str(status) in caplog.text
	assert '"operation_id": "op-77"' in caplog.text
	assert len(client.writes) == 1


@pytest.mark.asyncio
async def test_bulk_item_errors_are_logged(caplog):
	client = FakeStoreClient(write_response=StoreResponse(200, {
		"errors": True,
		"items": [
			{"index": {"status": 201}},
			{"index": {"status": 400, "error": {"type": "mapper_parsing_exception"}}},
		],
	}))
	records = [make_record(operation_id="fine"), make_record(operation_id="rejected")]
	with caplog.at_level(logging.WARNING, logger="tradelogs.pipeline"):
		assert await _pipeline(client).process_batch(records) is True
	assert "mapper_parsing_exception" in caplog.text
	assert '"operation_id": "rejected"' in caplog.text
	assert "fine" not in caplog.text


def test_from_config():
	from types import SimpleNamespace

	cfg = SimpleNamespace(
		env_source="prod",
		index_base="trade_log_prod",
		rotation=RotationPattern.HOUR,
		batch_mode="single",
		on_malformed="skip",
	)
	pipeline = TradeLogPipeline.from_config(object(), cfg)
	assert pipeline.index_base == "trade_log_prod"
	assert pipeline.pattern is RotationPattern.HOUR
	assert pipeline.batch_mode == "single"
	assert pipeline.on_malformed == "skip"
	assert pipeline.rotation_state.last_known_partition_id is None


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["&a [*a]", "[" * 2000 + "]" * 2000], ids=["recursive-alias", "deep-nesting"])
async def test_skip_policy_drops_alias_and_deep_values(fake_client, value):
	records = [make_record(operation_id="ok"), make_record(operation_id="bad", data=[("x", value)])]
	assert await _pipeline(fake_client, on_malformed="skip").process_batch(records) is True
	assert [doc["operation_id"] for doc in fake_client.writes[0][1]] == ["ok"]


@pytest.mark.asyncio
async def test_skip_policy_drops_blank_key_record(fake_client):
	records = [make_record(operation_id="blank", data=[("", "1")]), make_record(operation_id="ok")]
	await _pipeline(fake_client, on_malformed="skip").process_batch(records)
	assert [doc["operation_id"] for doc in fake_client.writes[0][1]] == ["ok"]


@pytest.mark.asyncio
async def test_transform_runs_off_the_event_loop_thread(fake_client, monkeypatch):
	import threading

	from tradelogs import pipeline as pipeline_module

	seen = []
	real_transform = pipeline_module.transform

	def recording_transform(record, env_source):
		seen.append(threading.get_ident())
		return real_transform(record, env_source)

	monkeypatch.setattr(pipeline_module, "transform", recording_transform)
	await _pipeline(fake_client).process_batch([make_record(), make_record()])
	assert len(seen) == 2
	assert threading.get_ident() not in seen
