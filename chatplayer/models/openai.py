"""CompletionClient: plain HTTP client for the OpenAI chat completions API.

The body is classified the way the endpoint is consumed: first as a success
payload, then as a structured ``{"error": ...}`` payload, and anything else is
a parse failure that keeps the original body. The HTTP status is not used for
classification. A request that cannot be completed is a TransportError.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Sequence

import httpx

from chatplayer.protocols import ParseError, StructuredAPIError, TransportError
from chatplayer.types import APIErrorPayload, CompletionResponse, Message

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-3.5-turbo"


def _transport_error_text(exc: Exception, url: Optional[str] = None) -> str:
    """JSON description of a transport failure for the error log."""
    if isinstance(exc, httpx.HTTPError):
        try:
            url = str(exc.request.url)
        except RuntimeError:
            # .request is unset for errors raised before a request was built
            pass
    status = None
    if isinstance(exc, httpx.HTTPStatusError):
        status = str(exc.response.status_code)
    return json.dumps({"status": status, "url": url, "error": str(exc) or type(exc).__name__})


class CompletionClient:
    """Chat completion client backed by ``httpx``.

    Usage::

        client = CompletionClient(api_key, proxy="socks5://127.0.0.1:1080")
        response = client.complete([Message(MessageRole.USER, "Hello")])
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        proxy: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        client_kwargs: dict[str, Any] = {"timeout": timeout}
        if proxy:
            client_kwargs["proxy"] = proxy
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client = httpx.Client(**client_kwargs)

    @property
    def model(self) -> str:
        return self._model

    @property
    def url(self) -> str:
        return self._url

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> CompletionClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def build_payload(self, messages: Sequence[Message]) -> dict[str, Any]:
        return {"model": self._model, "messages": [m.to_dict() for m in messages]}

    def complete(self, messages: Sequence[Message]) -> CompletionResponse:
        """POST the messages and return the parsed completion.

        Raises:
            TransportError: the request could not be built or completed.
            StructuredAPIError: the API returned an error payload.
            ParseError: the body matched neither shape.
        """
        try:
            response = self._client.post(
                self._url,
                json=self.build_payload(messages),
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self._api_key}",
                },
            )
            body = response.text
        except httpx.HTTPError as exc:
            logger.debug("Completion request failed: %s", exc, exc_info=True)
            raise TransportError(str(exc) or type(exc).__name__, _transport_error_text(exc)) from exc
        except (httpx.InvalidURL, UnicodeEncodeError) as exc:
            # The request could not be built: bad base URL, or a key that is not ASCII
            logger.warning(f"Could not build completion request: {exc}")
            raise TransportError(
                str(exc) or type(exc).__name__, _transport_error_text(exc, self._url)
            ) from exc

        logger.debug(f"Completion endpoint answered HTTP {response.status_code}")
        return self.parse_body(body)

    @staticmethod
    def parse_body(body: str) -> CompletionResponse:
        """Classify a response body. See module docstring."""
        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ParseError(
                f"Invalid JSON in response: {exc}",
                json.dumps({"error": str(exc), "original": body}),
                body,
            ) from exc

        try:
            return CompletionResponse.from_dict(data)
        except ValueError as success_error:
            try:
                payload = APIErrorPayload.from_dict(data)
            except ValueError:
                raise ParseError(
                    f"Unexpected response: {success_error}",
                    json.dumps({"error": str(success_error), "original": body}),
                    body,
                ) from success_error
            raise StructuredAPIError(payload.error, json.dumps(payload.to_dict())) from None
