"""Tests for HttpTransport (against httpx.MockTransport) and LiteLLMTransport."""

import json
import threading
import time
from unittest import TestCase
from unittest.mock import patch

import httpx

from llm_engine.core.codecs import encode_eventstream_message
from llm_engine.core.interfaces import EMBEDDINGS_SHAPE, WireRequest
from llm_engine.core.providers.openai_chat import OpenAIChatAdapter
from llm_engine.core.transport import STREAM_DONE, HttpTransport, LiteLLMTransport
from llm_engine.service.errors import CancelledError, LLMTimeoutError, ProviderApiError
from llm_engine.types.context import CancellationToken


def _request(**kwargs):
    values = {
        "provider": "openai",
        "model": "gpt-4o-mini",
        "url": "https://api.example.com/v1/chat/completions",
        "headers": {"Authorization": "Bearer sk-test"},
        "params": {"api-version": "1"},
        "body": {"model": "gpt-4o-mini", "messages": []},
        "shape": "chat",
    }
    values.update(kwargs)
    return WireRequest(**values)


def _transport(handler):
    return HttpTransport(client=httpx.Client(transport=httpx.MockTransport(handler)))


class HttpTransportSendTests(TestCase):
    def test_send_posts_json_and_returns_wire_response(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        response = _transport(handler).send(_request())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.text), {"ok": True})
        self.assertEqual(response.shape, "chat")
        self.assertEqual(seen[0].method, "POST")
        self.assertEqual(seen[0].headers["Authorization"], "Bearer sk-test")
        self.assertEqual(seen[0].url.params["api-version"], "1")
        self.assertEqual(json.loads(seen[0].content), {"model": "gpt-4o-mini", "messages": []})

    def test_error_statuses_are_returned_for_the_adapter(self):
        adapter = OpenAIChatAdapter()
        responses = [
            httpx.Response(429, json={"error": {"message": "Slow down", "type": "rate_limit_exceeded"}}),
            httpx.Response(500, text="<html><title>Internal Server Error</title></html>"),
        ]
        transport = _transport(lambda request: responses.pop(0))

        with self.assertRaises(ProviderApiError) as ctx:
            adapter.parse_response(transport.send(_request()))
        self.assertEqual(ctx.exception.status_code, 429)
        self.assertEqual(ctx.exception.category, "rate_limit_exceeded")

        with self.assertRaises(ProviderApiError) as ctx:
            adapter.parse_response(transport.send(_request()))
        self.assertEqual(ctx.exception.message, "Internal Server Error")
        self.assertEqual(ctx.exception.category, "server_error")

    def test_timeout_is_mapped(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        with self.assertRaises(LLMTimeoutError) as ctx:
            _transport(handler).send(_request())
        self.assertEqual(ctx.exception.category, "timeout")
        self.assertEqual(ctx.exception.provider, "openai")

    def test_connection_failure_is_mapped(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with self.assertRaises(ProviderApiError) as ctx:
            _transport(handler).send(_request())
        self.assertEqual(ctx.exception.category, "connection")

    def test_cancelled_token_prevents_the_request(self):
        calls = []
        token = CancellationToken()
        token.cancel()
        with self.assertRaises(CancelledError):
            _transport(lambda request: calls.append(request)).send(_request(), token)
        self.assertEqual(calls, [])

    def test_cancel_while_waiting_for_headers_returns_promptly(self):
        release = threading.Event()

        def handler(request):
            release.wait(5)
            return httpx.Response(200, json={"late": True})

        token = CancellationToken()
        timer = threading.Timer(0.1, token.cancel)
        started = time.monotonic()
        timer.start()
        try:
            with self.assertRaises(CancelledError):
                _transport(handler).send(_request(), token)
            elapsed = time.monotonic() - started
        finally:
            release.set()
            timer.cancel()
        self.assertLess(elapsed, 2.0)

    def test_send_with_live_token_returns_response(self):
        token = CancellationToken()
        response = _transport(lambda request: httpx.Response(200, json={"ok": True})).send(_request(), token)
        self.assertEqual(json.loads(response.text), {"ok": True})
        self.assertFalse(token.cancelled)

    def test_transport_error_with_live_token_is_mapped(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with self.assertRaises(LLMTimeoutError):
            _transport(handler).send(_request(), CancellationToken())


class HttpTransportStreamTests(TestCase):
    def test_sse_stream_yields_data_payloads(self):
        body = b': ping\n\ndata: {"a": 1}\n\ndata: {"a": 2}\n\ndata: [DONE]\n\n'

        def handler(request):
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        with _transport(handler).open_stream(_request(stream=True)) as stream:
            self.assertEqual(stream.status_code, 200)
            chunks = list(stream.iter_chunks())
        self.assertEqual(chunks, ['{"a": 1}', '{"a": 2}', STREAM_DONE])

    def test_ndjson_stream(self):
        def handler(request):
            return httpx.Response(200, content=b'{"n": 1}\n\n{"n": 2}\n')

        with _transport(handler).open_stream(_request(stream=True, framing="ndjson")) as stream:
            self.assertEqual(list(stream.iter_chunks()), ['{"n": 1}', '{"n": 2}'])

    def test_eventstream_stream(self):
        body = encode_eventstream_message(b'{"n": 1}', {":message-type": "event"})

        def handler(request):
            return httpx.Response(200, content=body)

        with _transport(handler).open_stream(_request(stream=True, framing="eventstream")) as stream:
            self.assertEqual(list(stream.iter_chunks()), ['{"n": 1}'])

    def test_error_status_body_can_be_read(self):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "bad key", "type": "invalid_api_key"}})

        with _transport(handler).open_stream(_request(stream=True)) as stream:
            self.assertEqual(stream.status_code, 401)
            with self.assertRaises(ProviderApiError) as ctx:
                OpenAIChatAdapter().raise_for_status(stream.read())
        self.assertEqual(ctx.exception.message, "bad key")

    def test_cancel_between_chunks_stops_iteration(self):
        token = CancellationToken()
        body = b'data: {"a": 1}\n\ndata: {"a": 2}\n\n'

        def handler(request):
            return httpx.Response(200, content=body)

        received = []
        with self.assertRaises(CancelledError):
            with _transport(handler).open_stream(_request(stream=True), token) as stream:
                for chunk in stream.iter_chunks():
                    received.append(chunk)
                    token.cancel()
        self.assertEqual(received, ['{"a": 1}'])

    def test_cancel_before_stream_headers_arrive(self):
        release = threading.Event()

        def handler(request):
            release.wait(5)
            return httpx.Response(200, content=b'data: {"a": 1}\n\n')

        token = CancellationToken()
        timer = threading.Timer(0.1, token.cancel)
        started = time.monotonic()
        timer.start()
        try:
            with self.assertRaises(CancelledError):
                with _transport(handler).open_stream(_request(stream=True), token) as stream:
                    list(stream.iter_chunks())
            elapsed = time.monotonic() - started
        finally:
            release.set()
            timer.cancel()
        self.assertLess(elapsed, 2.0)


class LiteLLMTransportTests(TestCase):
    def test_send_passes_body_and_credentials(self):
        request = _request(
            provider="litellm",
            url="",
            headers={"X-Trace": "t"},
            timeout=12.0,
            transport_options={"api_key": "k"},
        )
        with patch("litellm.completion", return_value={"choices": []}) as completion:
            response = LiteLLMTransport().send(request)
        kwargs = completion.call_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-4o-mini")
        self.assertEqual(kwargs["api_key"], "k")
        self.assertEqual(kwargs["timeout"], 12.0)
        self.assertEqual(kwargs["extra_headers"], {"X-Trace": "t"})
        self.assertEqual(response.data, {"choices": []})
        self.assertEqual(response.status_code, 200)

    def test_embedding_requests_go_to_litellm_embedding(self):
        request = _request(
            provider="litellm",
            model="text-embedding-3-small",
            body={"model": "text-embedding-3-small", "input": ["a", "b"]},
            shape=EMBEDDINGS_SHAPE,
        )
        payload = {"data": [{"index": 0, "embedding": [0.5]}]}
        with patch("litellm.embedding", return_value=payload) as embedding, patch("litellm.completion") as completion:
            response = LiteLLMTransport().send(request)
        completion.assert_not_called()
        self.assertEqual(embedding.call_args.kwargs["input"], ["a", "b"])
        self.assertEqual(response.data, payload)
        self.assertEqual(response.shape, EMBEDDINGS_SHAPE)

    def test_stream_chunks_are_json_and_end_with_done(self):
        chunks = iter([{"choices": [{"index": 0, "delta": {"content": "Hi"}}]}])
        with patch("litellm.completion", return_value=chunks):
            with LiteLLMTransport().open_stream(_request(provider="litellm", stream=True)) as stream:
                received = list(stream.iter_chunks())
        self.assertEqual(json.loads(received[0])["choices"][0]["delta"]["content"], "Hi")
        self.assertEqual(received[-1], STREAM_DONE)

    def test_errors_are_mapped_by_status(self):
        class RateLimited(Exception):
            status_code = 429

        with patch("litellm.completion", side_effect=RateLimited("too many")):
            with self.assertRaises(ProviderApiError) as ctx:
                LiteLLMTransport().send(_request(provider="litellm"))
        self.assertEqual(ctx.exception.category, "rate_limit")
        self.assertEqual(ctx.exception.status_code, 429)
