"""Shared httpx transport for the Spira and Redmine REST clients"""

import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from incident_bridge.exceptions import (
    ConnectivityError,
    DeserializationError,
    RemoteNotFound,
    ValidationFault,
)

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class ApiClient:
    """Thin JSON-over-HTTP wrapper with retries and error classification."""

    def __init__(
        self,
        base_url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[Tuple[str, str]] = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        base_delay_s: float = 0.5,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.max_attempts = max_attempts
        self.base_delay_s = base_delay_s
        self.http = httpx.Client(
            timeout=timeout,
            auth=auth,
            headers={"Accept": "application/json", **(headers or {})},
            transport=transport,
        )

    def close(self):
        self.http.close()

    @staticmethod
    def _should_retry(exc: Exception) -> bool:
        """Best-effort retry predicate for transient failures."""
        if isinstance(exc, httpx.HTTPStatusError):
            return exc.response.status_code in RETRY_STATUS_CODES
        # Connection resets, timeouts, DNS hiccups
        if isinstance(exc, httpx.TransportError):
            return True
        return False

    def _with_retries(self, fn):
        """Run callable with small exponential backoff on transient errors."""
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:
                if attempt >= self.max_attempts or not self._should_retry(e):
                    raise
                time.sleep(self.base_delay_s * (2 ** (attempt - 1)))
                attempt += 1

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = self._url(path)

        def _call():
            response = self.http.request(method, url, **kwargs)
            if response.status_code in RETRY_STATUS_CODES:
                response.raise_for_status()
            return response

        try:
            response = self._with_retries(_call)
        except httpx.HTTPStatusError as e:
            raise ConnectivityError(
                f"{method} {url} failed with HTTP {e.response.status_code} after {self.max_attempts} attempts"
            ) from e
        except httpx.TransportError as e:
            raise ConnectivityError(f"{method} {url} failed: {e}") from e

        self._raise_for_status(method, url, response)
        return response

    @staticmethod
    def _fault_messages(payload: Any) -> Tuple[str, List[Tuple[str, str]]]:
        """Extract (summary, [(field, message)]) from a Redmine or Spira fault body."""
        if isinstance(payload, dict):
            # Redmine: {"errors": ["Subject cannot be blank", ...]}
            errors = payload.get("errors")
            if isinstance(errors, list):
                return "Validation failed", [("", str(msg)) for msg in errors]
            # Spira: {"Message": "...", "Messages": [{"FieldName": ..., "Message": ...}]}
            summary = payload.get("Summary") or payload.get("Message") or "Validation failed"
            messages = []
            for item in payload.get("Messages") or []:
                if isinstance(item, dict):
                    messages.append((item.get("FieldName") or "", item.get("Message") or ""))
            return str(summary), messages
        if isinstance(payload, str) and payload.strip():
            return payload.strip(), []
        return "Validation failed", []

    def _raise_for_status(self, method: str, url: str, response: httpx.Response):
        status = response.status_code
        if status < 400:
            return
        if status == 404:
            raise RemoteNotFound(f"{method} {url} returned 404")
        if status in (401, 403):
            raise ConnectivityError(f"{method} {url} was rejected with HTTP {status}")
        if status in (400, 422):
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            summary, messages = self._fault_messages(payload)
            raise ValidationFault(summary, messages)
        raise ConnectivityError(f"{method} {url} failed with HTTP {status}: {response.text[:200]}")

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except (ValueError, json.JSONDecodeError) as e:
            raise DeserializationError(
                f"Could not decode JSON from {response.request.method} {response.request.url}: {e}",
                raw=response.text,
            ) from e

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._decode(self._send("GET", path, params=params))

    def post(self, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._decode(self._send("POST", path, json=body, params=params))

    def put(self, path: str, body: Any = None) -> Any:
        return self._decode(self._send("PUT", path, json=body))

    def delete(self, path: str) -> Any:
        return self._decode(self._send("DELETE", path))

    def post_binary(self, path: str, data: bytes, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self._send(
            "POST",
            path,
            content=data,
            params=params,
            headers={"Content-Type": "application/octet-stream"},
        )
        return self._decode(response)

    def get_binary(self, path: str) -> bytes:
        return self._send("GET", path).content
