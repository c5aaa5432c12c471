"""HTTP client for the tenant's chat-completion provider."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Iterator, Optional

import requests

from .config import CONFIG, LLMConfig
from .errors import ProviderError
from .llm.providers import ProviderRequest, StreamNormalizer, extract_completion_text


class LLMClient:
    """Sends provider requests built by ``build_provider_request``.

    ``stream`` yields OpenAI-style deltas (``{"content": ...}`` or
    ``{"tool_calls": [...]}``) whatever the provider; ``complete`` returns
    the assistant text of a non-streamed call.
    """

    def __init__(self, config: Optional[LLMConfig] = None, session: Optional[requests.Session] = None) -> None:
        self.config = config or CONFIG.llm
        self.session = session or requests.Session()
        self.logger = logging.getLogger("penguin_brain.llm_client")

    def _post(self, request: ProviderRequest) -> requests.Response:
        start = time.perf_counter()
        try:
            response = self.session.post(
                request.url,
                data=json.dumps(request.body),
                headers=request.headers,
                timeout=self.config.request_timeout,
                stream=request.stream,
            )
        except requests.exceptions.Timeout as exc:
            self.logger.error(
                "LLM request timed out",
                extra={"provider": request.provider, "model": request.model},
            )
            raise ProviderError(0, f"timed out after {self.config.request_timeout}s") from exc
        except requests.exceptions.ConnectionError as exc:
            self.logger.error(
                "Could not connect to LLM provider",
                extra={"provider": request.provider, "model": request.model},
            )
            raise ProviderError(0, str(exc)) from exc
        except requests.exceptions.RequestException as exc:
            self.logger.error(
                "LLM request failed",
                exc_info=True,
                extra={"provider": request.provider, "model": request.model},
            )
            raise ProviderError(0, str(exc)) from exc

        elapsed = time.perf_counter() - start
        if response.status_code != 200:
            detail = response.text[:2000]
            response.close()
            self.logger.error(
                "LLM request failed",
                extra={
                    "status_code": response.status_code,
                    "elapsed_ms": round(elapsed * 1000, 2),
                    "provider": request.provider,
                    "model": request.model,
                },
            )
            raise ProviderError(response.status_code, detail)
        self.logger.info(
            "LLM request accepted",
            extra={
                "status_code": response.status_code,
                "elapsed_ms": round(elapsed * 1000, 2),
                "provider": request.provider,
                "model": request.model,
            },
        )
        return response

    def stream(self, request: ProviderRequest) -> Iterator[Dict[str, Any]]:
        """Yield normalized deltas until the provider ends the stream."""

        response = self._post(request)
        normalizer = StreamNormalizer(request.provider)
        start = time.perf_counter()
        try:
            # Bytes, decoded here: requests assumes ISO-8859-1 for text/event-stream.
            for raw_line in response.iter_lines():
                if not raw_line:
                    continue
                if isinstance(raw_line, bytes):
                    raw_line = raw_line.decode("utf-8", errors="replace")
                line = raw_line.strip()
                if not line or line.startswith(":"):
                    continue
                if request.line_delimited:
                    payload = line
                elif line.startswith("data:"):
                    payload = line[5:].strip()
                else:
                    continue
                if payload == "[DONE]":
                    break
                try:
                    event = json.loads(payload)
                except json.JSONDecodeError:
                    self.logger.debug("Skipping malformed stream line", extra={"provider": request.provider})
                    continue
                if not isinstance(event, dict):
                    continue
                for delta in normalizer.feed(event):
                    yield delta
        except requests.exceptions.RequestException as exc:
            self.logger.error("LLM stream interrupted", extra={"provider": request.provider})
            raise ProviderError(0, str(exc)) from exc
        finally:
            response.close()
        self.logger.info(
            "LLM stream completed",
            extra={
                "elapsed_ms": round((time.perf_counter() - start) * 1000, 2),
                "provider": request.provider,
                "model": request.model,
            },
        )

    def complete(self, request: ProviderRequest) -> str:
        """Return the assistant text of a non-streamed request."""

        response = self._post(request)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(response.status_code, "Unexpected LLM response") from exc
        finally:
            response.close()
        return extract_completion_text(request.provider, data).strip()


__all__ = ["LLMClient"]
