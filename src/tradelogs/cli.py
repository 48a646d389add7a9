import signal
import sys

# Handle Ctrl+C gracefully before any other imports
signal.signal(signal.SIGINT, lambda *_: sys.exit(130))

import asyncio
import json
import logging

import click
import typer

from .bus import Subscription
from .config import load_config, set_dotenv_path
from .errors import InvalidRecordError, TradeLogsError
from .initializer import ensure_partition
from .opensearch.client import OpenSearchError, check_connection, get_opensearch_client
from .pipeline import TradeLogPipeline
from .records import RawLogRecord

app = typer.Typer()
logger = logging.getLogger(__name__)


def _fail(message):
	typer.echo(typer.style(f"Error: {message}", fg=typer.colors.RED), err=True)
	raise typer.Exit(1)


@app.callback()
def configure(
	env: str = typer.Option(None, "--env", help="Path to a .env file to load"),
	verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
	"""Ship trade-activity logs into rotated OpenSearch indices."""
	if env:
		set_dotenv_path(env)
	logging.basicConfig(
		level=logging.DEBUG if verbose else logging.INFO,
		format="%(asctime)s %(levelname)s %(name)s %(message)s",
	)


def require_opensearch():
	"""Load config and a client, verifying OpenSearch is accessible."""
	try:
		cfg = load_config()
	except TradeLogsError as e:
		_fail(e)
	client = get_opensearch_client()
	try:
		check_connection(client)
	except OpenSearchError as e:
		_fail(e)
	return client, cfg


@app.command()
def init():
	"""Create the current trade-log index with its mapping (idempotent)."""
	client, cfg = require_opensearch()
	index = client.get_index_name_with_pattern(cfg.index_base, cfg.rotation)
	if not ensure_partition(client, index):
		_fail(f"Could not initialize index '{index}'.")
	typer.echo(f"Index '{index}' initialized.")


async def _consume_stream(stream, pipeline, subscription):
	"""Feed NDJSON lines from ``stream`` through the subscription until EOF."""
	consumer = asyncio.create_task(subscription.run(pipeline))
	try:
		line_no = 0
		while not consumer.done():
			line = await asyncio.to_thread(stream.readline)
			if not line:
				break
			line_no += 1
			line = line.strip()
			if not line:
				continue
			try:
				record = RawLogRecord.from_dict(json.loads(line))
			except (ValueError, InvalidRecordError) as e:
				logger.error("Ignoring line %d: %s", line_no, e)
				continue
			await subscription.publish(record)
		await subscription.close()
		return await consumer
	finally:
		if not consumer.done():
			consumer.cancel()


@app.command()
def run(
	input_file: typer.FileText = typer.Option("-", "--input", "-i", help="NDJSON records to consume (default: stdin)"),
):
	"""Consume trade-log records until end of input."""
	client, cfg = require_opensearch()
	pipeline = TradeLogPipeline.from_config(client, cfg)
	subscription = Subscription(max_batch=cfg.max_batch)
	try:
		delivered = asyncio.run(_consume_stream(input_file, pipeline, subscription))
	except (TradeLogsError, OpenSearchError) as e:
		_fail(e)
	typer.echo(f"Consumed {delivered} record(s).")


@app.command()
def serve(
	port: int = typer.Option(None, "--port", "-p", help="Port to listen on (default: TRADELOGS_BUS_PORT)"),
	host: str = typer.Option(None, "--host", "-h", help="Host to bind to (default: TRADELOGS_BUS_HOST)"),
):
	"""Start the HTTP ingress with the pipeline consuming in the background."""
	import uvicorn
	try:
		cfg = load_config()
	except TradeLogsError as e:
		_fail(e)
	uvicorn.run("tradelogs.web.server:app", host=host or cfg.bus_host, port=port or cfg.bus_port)


def main():
	if len(sys.argv) == 1:
		# No arguments: show help
		command = typer.main.get_command(app)
		ctx = click.Context(command)
		typer.echo(command.get_help(ctx), err=True)
		return 0
	try:
		app()
	except typer.Exit:
		raise
	except Exception as e:
		typer.echo(typer.style(
			f"Fatal error: {type(e).__name__}: {e}",
			fg=typer.colors.RED
		), err=True)
		sys.exit(1)

if __name__ == "__main__":
	main()
