"""Transports: deliver a WireRequest and hand back raw (or framed) bytes.

``HttpTransport`` talks to HTTP backends over one shared ``httpx.Client``;
``LiteLLMTransport`` routes chat and embedding requests through ``litellm``
(imported lazily so the dependency is only needed when the router backend is
used).
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

import httpx

from llm_engine.core.codecs import iter_eventstream, iter_ndjson, iter_sse_data
from llm_engine.core.interfaces import EMBEDDINGS_SHAPE, WireRequest, WireResponse
from llm_engine.service.errors import (
    CancelledError,
    LLMError,
    LLMTimeoutError,
    ProviderApiError,
    category_for_status,
)
from llm_engine.types.config import DEFAULT_TIMEOUT_SECONDS
from llm_engine.types.context import CancellationToken

logger = logging.getLogger(__name__)

STREAM_DONE = "[DONE]"


def _noop() -> None:
    return None


def _watch(cancellation: Optional[CancellationToken], close: Callable[[], None]) -> Callable[[], None]:
    if cancellation is None:
        return _noop
    return cancellation.on_cancel(close)


def _raise_if_cancelled(cancellation: Optional[CancellationToken]) -> None:
    if cancellation is not None and cancellation.cancelled:
        raise CancelledError("Run cancelled by caller")


def _wrap_httpx_error(exc: Exception, provider: str) -> ProviderApiError:
    if isinstance(exc, httpx.TimeoutException):
        return LLMTimeoutError(f"Request timed out: {exc}", provider=provider, category="timeout")
    return ProviderApiError(f"Transport failure: {exc}", provider=provider, category="connection")


class _PendingResponse:
    """Hands a response from the sending thread back to the waiting caller."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        self.done = threading.Event()
        self._lock = threading.Lock()
        self.response: Optional[httpx.Response] = None
        self.error: Optional[Exception] = None
        self._abandoned = False

    def deliver(self, response: Optional[httpx.Response] = None, error: Optional[Exception] = None) -> None:
        with self._lock:
            self.response = response
            self.error = error
            abandoned = self._abandoned
        self.done.set()
        if not abandoned:
            return
        if response is not None:
            response.close()
        if error is not None:
            logger.debug("Abandoned LLM request failed provider=%s: %s", self.provider, error)

    def abandon(self) -> None:
        """Give up on the request; a response arriving later is closed unread."""
        with self._lock:
            self._abandoned = True
            response = self.response
        if response is not None:
            response.close()


class HttpStreamResponse:
    """An open httpx streaming response, framed by the request's codec."""

    def __init__(
        self,
        response: httpx.Response,
        request: WireRequest,
        cancellation: Optional[CancellationToken],
    ) -> None:
        self._response = response
        self._request = request
        self._cancellation = cancellation
        self.status_code = response.status_code

    def read(self) -> WireResponse:
        try:
            self._response.read()
        except (httpx.HTTPError, httpx.StreamError) as exc:
            _raise_if_cancelled(self._cancellation)
            raise _wrap_httpx_error(exc, self._request.provider) from exc
        return WireResponse(
            provider=self._request.provider,
            status_code=self._response.status_code,
            headers=dict(self._response.headers),
            text=self._response.text,
            shape=self._request.shape,
        )

    def _frames(self) -> Iterator[str]:
        framing = self._request.framing
        if framing == "eventstream":
            return iter_eventstream(self._response.iter_bytes())
        if framing == "ndjson":
            return iter_ndjson(self._response.iter_lines())
        return iter_sse_data(self._response.iter_lines())

    def iter_chunks(self) -> Iterator[str]:
        try:
            for chunk in self._frames():
                _raise_if_cancelled(self._cancellation)
                yield chunk
        except (httpx.HTTPError, httpx.StreamError) as exc:
            _raise_if_cancelled(self._cancellation)
            raise _wrap_httpx_error(exc, self._request.provider) from exc


class HttpTransport:
    """Thread-safe HTTP transport over a shared ``httpx.Client``."""

    def __init__(self, client: Optional[httpx.Client] = None) -> None:
        self._client = client
        self._lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = httpx.Client(
                        timeout=httpx.Timeout(DEFAULT_TIMEOUT_SECONDS, connect=30.0)
                    )
        return self._client

    def _open(self, request: WireRequest, cancellation: Optional[CancellationToken]) -> httpx.Response:
        _raise_if_cancelled(cancellation)
        client = self._get_client()
        logger.debug(
            "LLM request provider=%s model=%s %s %s stream=%s",
            request.provider,
            request.model,
            request.method,
            request.url,
            request.stream,
        )
        http_request = client.build_request(
            request.method,
            request.url,
            headers=request.headers,
            params=request.params or None,
            json=request.body,
            timeout=request.timeout or DEFAULT_TIMEOUT_SECONDS,
        )
        if cancellation is None:
            try:
                return client.send(http_request, stream=True)
            except httpx.HTTPError as exc:
                raise _wrap_httpx_error(exc, request.provider) from exc
        return self._open_cancellable(client, http_request, request.provider, cancellation)

    def _open_cancellable(
        self,
        client: httpx.Client,
        http_request: httpx.Request,
        provider: str,
        cancellation: CancellationToken,
    ) -> httpx.Response:
        """Send on a worker thread so a cancel can interrupt the wait for headers."""
        pending = _PendingResponse(provider)
        unregister = cancellation.on_cancel(pending.done.set)
        try:
            worker = threading.Thread(
                target=self._deliver,
                args=(client, http_request, pending),
                name=f"llm-send-{provider}",
                daemon=True,
            )
            worker.start()
            pending.done.wait()
        finally:
            unregister()
        if cancellation.cancelled:
            pending.abandon()
            raise CancelledError("Run cancelled by caller")
        if pending.error is not None:
            exc = pending.error
            if isinstance(exc, httpx.HTTPError):
                raise _wrap_httpx_error(exc, provider) from exc
            raise exc
        return pending.response

    @staticmethod
    def _deliver(client: httpx.Client, http_request: httpx.Request, pending: _PendingResponse) -> None:
        try:
            response = client.send(http_request, stream=True)
        except Exception as exc:
            pending.deliver(error=exc)
            return
        pending.deliver(response=response)

    def send(self, request: WireRequest, cancellation: Optional[CancellationToken] = None) -> WireResponse:
        response = self._open(request, cancellation)
        unregister = _watch(cancellation, response.close)
        try:
            return HttpStreamResponse(response, request, cancellation).read()
        finally:
            unregister()
            response.close()

    @contextmanager
    def open_stream(
        self, request: WireRequest, cancellation: Optional[CancellationToken] = None
    ) -> Iterator[HttpStreamResponse]:
        response = self._open(request, cancellation)
        unregister = _watch(cancellation, response.close)
        try:
            yield HttpStreamResponse(response, request, cancellation)
        finally:
            unregister()
            response.close()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


# -- LiteLLM -----------------------------------------------------------------


def _to_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    return dict(obj)


def _wrap_litellm_error(exc: Exception, provider: str) -> ProviderApiError:
    import litellm

    status = getattr(exc, "status_code", None)
    if not isinstance(status, int):
        status = None
    message = getattr(exc, "message", None) or str(exc)
    if isinstance(exc, litellm.exceptions.Timeout):
        return LLMTimeoutError(message, provider=provider, status_code=status, category="timeout")
    category = category_for_status(status) if status is not None else "connection"
    return ProviderApiError(message, provider=provider, status_code=status, category=category)


class LiteLLMStreamResponse:
    status_code = 200

    def __init__(
        self,
        stream: Any,
        request: WireRequest,
        cancellation: Optional[CancellationToken],
    ) -> None:
        self._stream = stream
        self._request = request
        self._cancellation = cancellation

    def read(self) -> WireResponse:
        return WireResponse(provider=self._request.provider, status_code=200, shape=self._request.shape)

    def iter_chunks(self) -> Iterator[str]:
        try:
            for chunk in self._stream:
                _raise_if_cancelled(self._cancellation)
                yield json.dumps(_to_dict(chunk), default=str)
        except LLMError:
            raise
        except Exception as exc:
            raise _wrap_litellm_error(exc, self._request.provider) from exc
        # The LiteLLM iterator ending is the router's terminal marker.
        yield STREAM_DONE


class LiteLLMTransport:
    """Sends OpenAI-shaped bodies through ``litellm.completion`` (or ``litellm.embedding``)."""

    def _kwargs(self, request: WireRequest) -> Dict[str, Any]:
        kwargs = dict(request.body)
        kwargs.update(request.transport_options)
        kwargs.setdefault("timeout", request.timeout or DEFAULT_TIMEOUT_SECONDS)
        if request.headers:
            kwargs["extra_headers"] = dict(request.headers)
        return kwargs

    def _completion(self, request: WireRequest, cancellation: Optional[CancellationToken]) -> Any:
        _raise_if_cancelled(cancellation)
        logger.debug(
            "LiteLLM request provider=%s model=%s stream=%s",
            request.provider,
            request.model,
            request.stream,
        )
        import litellm

        try:
            if request.shape == EMBEDDINGS_SHAPE:
                return litellm.embedding(**self._kwargs(request))
            return litellm.completion(**self._kwargs(request))
        except Exception as exc:
            raise _wrap_litellm_error(exc, request.provider) from exc

    def send(self, request: WireRequest, cancellation: Optional[CancellationToken] = None) -> WireResponse:
        response = self._completion(request, cancellation)
        return WireResponse(
            provider=request.provider,
            status_code=200,
            data=_to_dict(response),
            shape=request.shape,
        )

    @contextmanager
    def open_stream(
        self, request: WireRequest, cancellation: Optional[CancellationToken] = None
    ) -> Iterator[LiteLLMStreamResponse]:
        stream = self._completion(request, cancellation)
        try:
            yield LiteLLMStreamResponse(stream, request, cancellation)
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                close()


__all__ = [
    "STREAM_DONE",
    "HttpStreamResponse",
    "HttpTransport",
    "LiteLLMStreamResponse",
    "LiteLLMTransport",
]
