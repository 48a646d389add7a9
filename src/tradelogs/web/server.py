# HTTP ingress: publishes trade-log records onto the subscription

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException

from ..bus import Subscription
from ..config import load_config
from ..errors import InvalidRecordError
from ..opensearch.client import get_opensearch_client
from ..pipeline import TradeLogPipeline
from ..records import RawLogRecord

logger = logging.getLogger(__name__)


def _parse_payload(payload: Any) -> List[RawLogRecord]:
	# A single record, or {"records": [...]} for a batch
	if isinstance(payload, dict) and "records" in payload:
		items = payload["records"]
		if not isinstance(items, list):
			raise InvalidRecordError("'records' must be a list")
	else:
		items = [payload]
	return [RawLogRecord.from_dict(item) for item in items]


def create_app(pipeline: Optional[TradeLogPipeline] = None, subscription: Optional[Subscription] = None) -> FastAPI:
	"""Build the ingress app. Pipeline and subscription default to ones built from config."""

	@asynccontextmanager
	async def lifespan(app: FastAPI):
		nonlocal pipeline, subscription
		if pipeline is None or subscription is None:
			cfg = load_config()
			if pipeline is None:
				pipeline = TradeLogPipeline.from_config(get_opensearch_client(), cfg)
			if subscription is None:
				subscription = Subscription(max_batch=cfg.max_batch)
		app.state.subscription = subscription
		app.state.consumer_error = None
		consumer = asyncio.create_task(subscription.run(pipeline))

		def _on_done(task):
			if not task.cancelled() and task.exception() is not None:
				app.state.consumer_error = task.exception()
				logger.critical("Pipeline stopped: %s", task.exception(), exc_info=task.exception())

		consumer.add_done_callback(_on_done)
		app.state.consumer = consumer
		try:
			yield
		finally:
			if not consumer.done():
				await subscription.close()
				await consumer

	app = FastAPI(lifespan=lifespan)

	def _require_consumer():
		if app.state.consumer.done():
			error = app.state.consumer_error
			raise HTTPException(status_code=503, detail=f"Pipeline stopped: {error}")

	@app.post("/v1/trade-logs", status_code=202)
	async def publish(payload: Any = Body(...)) -> Dict[str, Any]:
		_require_consumer()
		try:
			records = _parse_payload(payload)
		except InvalidRecordError as e:
			raise HTTPException(status_code=400, detail=str(e))
		for record in records:
			await app.state.subscription.publish(record)
		return {"accepted": len(records)}

	@app.get("/health")
	def health() -> Dict[str, Any]:
		_require_consumer()
		return {"status": "ok"}

	return app


app = create_app()
