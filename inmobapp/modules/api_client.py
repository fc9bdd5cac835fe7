"""
Resilient fetch client for the Apps Script backend.

Every call gets a fixed timeout, a bounded retry loop and a uniform error
shape (ApiTimeout, NetworkError, ServerError, LogicError). The script
answers HTTP 200 with `ok: false` for business failures and sometimes
returns HTML error pages, so bodies are read as text before JSON decoding.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone

import httpx

from inmobapp.config import Settings, get_settings
from inmobapp.errors import ApiError, ApiTimeout, ConfigurationError, LogicError, NetworkError, ServerError

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "La conexión tardó demasiado tiempo. Por favor, reintenta."

# Total deadline per attempt: connect, send and full body read.
API_TIMEOUT = 10.0

_last_call: dict | None = None


def get_last_call() -> dict | None:
    """Most recent request, for operator diagnostics only."""
    return dict(_last_call) if _last_call else None


def _record_call(endpoint: str, method: str, options: dict, status: int | None, response, error: str | None) -> None:
    global _last_call
    _last_call = {
        "endpoint": endpoint,
        "method": method,
        "options": options,
        "status": status,
        "response": response,
        "error": error,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def decode_body(response: httpx.Response) -> dict:
    text = response.text
    try:
        data = json.loads(text)
    except ValueError:
        return {"ok": response.is_success, "message": text}
    if not isinstance(data, dict):
        return {"ok": response.is_success, "data": data}
    return data


def _body_message(data: dict) -> str | None:
    return data.get("error") or data.get("message")


class ApiClient:
    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = API_TIMEOUT,
    ):
        self.settings = settings or get_settings()
        self.timeout = timeout
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def request(
        self,
        url: str,
        *,
        method: str = "POST",
        json_body: dict | None = None,
        params: dict | None = None,
        headers: dict | None = None,
        retries: int | None = None,
    ) -> dict:
        """Send a request and return the decoded JSON body, retrying everything except timeouts."""
        options = {"params": params, "headers": headers}

        async def attempt() -> dict:
            response = await self._send(url, method, json_body, params, headers)
            data = decode_body(response)
            if not response.is_success:
                message = _body_message(data) or f"Error de servidor ({response.status_code})"
                _record_call(url, method, options, response.status_code, data, message)
                raise ServerError(message, response.status_code)
            if data.get("ok") is False:
                message = _body_message(data) or "La operación no pudo ser completada en el servidor"
                _record_call(url, method, options, response.status_code, data, message)
                raise LogicError(message, data)
            _record_call(url, method, options, response.status_code, data, None)
            return data

        return await self._with_retries(attempt, url, retries)

    async def fetch_text(self, url: str, *, retries: int | None = None) -> str:
        """GET a published export as raw text (CSV). Cache-busted: the sheet is served stale otherwise."""
        params = {"t": str(int(time.time() * 1000))}

        async def attempt() -> str:
            response = await self._send(url, "GET", None, params, None)
            if not response.is_success:
                message = f"Error de servidor ({response.status_code})"
                _record_call(url, "GET", {"params": params}, response.status_code, None, message)
                raise ServerError(message, response.status_code)
            _record_call(url, "GET", {"params": params}, response.status_code, f"<{len(response.text)} chars>", None)
            return response.text

        return await self._with_retries(attempt, url, retries)

    async def call(self, action: str, retries: int | None = None, **fields) -> dict:
        """POST an action to the web app. Body is sent as text/plain to avoid a CORS preflight on the script."""
        if not self.settings.webapp_url:
            raise ConfigurationError("WEBAPP_URL no está configurada")
        if not self.settings.api_key:
            raise ConfigurationError("API_KEY no está configurada")
        body = {"apiKey": self.settings.api_key, "action": action, **fields}
        return await self.request(
            self.settings.webapp_url,
            json_body=body,
            headers={"Content-Type": "text/plain;charset=utf-8"},
            retries=retries,
        )

    async def _send(self, url, method, json_body, params, headers) -> httpx.Response:
        content = json.dumps(json_body) if json_body is not None else None
        try:
            return await asyncio.wait_for(
                self._client.request(
                    method,
                    url,
                    content=content,
                    params=params,
                    headers=headers,
                    timeout=self.timeout,
                ),
                self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error("[API Timeout] %s timed out after %ss", url, self.timeout)
            _record_call(url, method, {"params": params}, None, None, str(e) or "timeout")
            raise ApiTimeout(TIMEOUT_MESSAGE) from e
        except httpx.HTTPError as e:
            _record_call(url, method, {"params": params}, None, None, str(e))
            raise NetworkError(f"Error de red: {e}") from e

    async def _with_retries(self, attempt, url: str, retries: int | None):
        retries = self.settings.api_retries if retries is None else retries
        tries = 0
        while True:
            try:
                return await attempt()
            except ApiTimeout:
                raise
            except ApiError as e:
                if tries >= retries:
                    logger.error("[API %s] %s failed after %d attempts: %s", e.kind, url, tries + 1, e.message)
                    raise
                tries += 1
                logger.warning("[API %s] %s: %s (retry %d/%d)", e.kind, url, e.message, tries, retries)
                if self.settings.retry_backoff:
                    await asyncio.sleep(self.settings.retry_backoff * tries)
