# OpenSearch client for the ingestion pipeline - using stdlib urllib for fast imports

import json
import urllib.request
import urllib.error
from base64 import b64encode
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..config import load_config
from ..rotation import RotationPattern, partition_id


class OpenSearchError(Exception):
	"""Base exception for OpenSearch errors with user-friendly messages."""
	pass


class ConnectionFailedError(OpenSearchError):
	"""Raised when OpenSearch is not reachable."""
	pass


class AuthenticationError(OpenSearchError):
	"""Raised when authentication fails."""
	pass


@dataclass
class StoreResponse:
	"""HTTP status and decoded body of a store call."""
	status: int
	body: Dict[str, Any] = field(default_factory=dict)

	@property
	def ok(self) -> bool:
		return self.status in (200, 201)

	@property
	def error_type(self) -> Optional[str]:
		error = self.body.get("error") if isinstance(self.body, dict) else None
		if isinstance(error, dict):
			return error.get("type")
		return None


def _decode_body(raw):
	if not raw:
		return {}
	try:
		return json.loads(raw)
	except ValueError:
		return {"raw": raw}


class LightweightOpenSearchClient:
	"""Minimal OpenSearch client using stdlib urllib.

	Calls block; the async pipeline runs them in a worker thread.
	"""

	def __init__(self, url, user, password, timeout=30):
		self.base_url = url.rstrip("/")
		self.timeout = timeout
		# Pre-compute auth header
		credentials = b64encode(f"{user}:{password}".encode()).decode('ascii')
		self.headers = {
			"Authorization": f"Basic {credentials}",
			"Content-Type": "application/json",
		}

	def _request(self, method, path, data=None, content_type=None) -> StoreResponse:
		"""Make HTTP request to OpenSearch. Non-2xx statuses are returned, not raised."""
		url = f"{self.base_url}{path}"
		headers = dict(self.headers)
		if content_type:
			headers["Content-Type"] = content_type
		req = urllib.request.Request(url, data=data, headers=headers, method=method)
		try:
			with urllib.request.urlopen(req, timeout=self.timeout) as resp:
				return StoreResponse(resp.status, _decode_body(resp.read().decode('utf-8')))
		except urllib.error.HTTPError as e:
			if e.code == 401:
				raise AuthenticationError(f"Authentication failed (HTTP 401)")
			return StoreResponse(e.code, _decode_body(e.read().decode('utf-8', errors='replace')))
		except urllib.error.URLError as e:
			raise ConnectionFailedError(f"Cannot connect to {self.base_url}: {e.reason}")

	def info(self):
		"""Get cluster info (used for connection check)."""
		return self._request("GET", "/")

	def get_index_name_with_pattern(self, base_name: str, pattern: RotationPattern, now=None) -> str:
		"""Name of the index ``base_name`` rotates into at ``now`` (default: current time)."""
		return partition_id(base_name, pattern, now)

	def create_index_mapping(self, index: str, body: Dict[str, Any]) -> StoreResponse:
		"""Create an index with settings/mappings."""
		return self._request("PUT", f"/{index}", json.dumps(body).encode('utf-8'))

	def write_entities(self, index: str, docs: Iterable[Dict[str, Any]]) -> StoreResponse:
		"""Index documents in one _bulk request, preserving their order."""
		lines: List[str] = []
		for doc in docs:
			lines.append(json.dumps({"index": {"_index": index}}))
			lines.append(json.dumps(doc))
		payload = ("\n".join(lines) + "\n").encode('utf-8')
		return self._request("POST", "/_bulk", payload, content_type="application/x-ndjson")


def get_opensearch_client():
	cfg = load_config()
	return LightweightOpenSearchClient(
		url=cfg.opensearch_url,
		user=cfg.opensearch_user,
		password=cfg.opensearch_pass,
		timeout=cfg.opensearch_timeout,
	)


def check_connection(client):
	"""Check if OpenSearch is reachable. Raises ConnectionFailedError if not."""
	try:
		client.info()
	except ConnectionFailedError:
		raise ConnectionFailedError(
			f"Cannot connect to OpenSearch at {client.base_url}\n"
			f"Make sure OpenSearch is running and accessible."
		)
	except AuthenticationError:
		raise AuthenticationError(
			f"Authentication failed for OpenSearch at {client.base_url}\n"
			f"Check TRADELOGS_OPENSEARCH_USER and TRADELOGS_OPENSEARCH_PASS in your .env file."
		)
