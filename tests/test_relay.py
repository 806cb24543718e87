"""Tests for buddy.relay — gateway streaming and the relay endpoint."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import litellm
import pytest
from fastapi.testclient import TestClient

from buddy.relay.app import DONE_FRAME, create_app, encode_delta_frame
from buddy.relay.gateway import (
    CREDITS_MESSAGE,
    GATEWAY_ERROR_MESSAGE,
    RATE_LIMIT_MESSAGE,
    ChatGateway,
    GatewayError,
)
from buddy.schemas.settings import GatewaySettings
from buddy.settings import load_settings
from buddy.stream.decoder import FrameDecoder
from buddy.stream.extractor import parse_response

# Shorthand for the mock targets
_ACOMP = "buddy.relay.gateway.litellm.acompletion"
_SLEEP = "buddy.relay.gateway.asyncio.sleep"


# ── Helpers ───────────────────────────────────────────────────────


def _gateway_settings(**overrides) -> GatewaySettings:
    defaults = {
        "model": "gemini/gemini-2.5-flash",
        "api_key_env": "BUDDY_TEST_GATEWAY_KEY",
        "max_retries": 3,
    }
    defaults.update(overrides)
    return GatewaySettings(**defaults)


def _mock_chunk(content: str | None) -> MagicMock:
    chunk = MagicMock()
    chunk.choices = [MagicMock()]
    chunk.choices[0].delta = MagicMock()
    chunk.choices[0].delta.content = content
    return chunk


def _mock_stream(*contents: str | None):
    async def stream():
        for content in contents:
            yield _mock_chunk(content)
    return stream()


def _decode_body(body: str) -> list[str]:
    decoder = FrameDecoder()
    return decoder.feed(body) + decoder.flush()


class _FakeGateway:
    """Stands in for ChatGateway inside the app."""

    def __init__(self, deltas=(), error: GatewayError | None = None, fail_after: int | None = None):
        self.deltas = list(deltas)
        self.error = error
        self.fail_after = fail_after
        self.calls: list[tuple[list[dict], str]] = []

    async def open_stream(self, messages, system):
        self.calls.append((messages, system))
        if self.error is not None:
            raise self.error
        return self._stream()

    async def _stream(self):
        for i, delta in enumerate(self.deltas):
            if self.fail_after is not None and i >= self.fail_after:
                raise RuntimeError("upstream dropped")
            yield delta


def _client(gateway) -> TestClient:
    return TestClient(create_app(load_settings(), gateway=gateway))


_BODY = {"messages": [{"role": "user", "content": "rough night"}]}


# ── Frame encoding ────────────────────────────────────────────────


class TestFrameEncoding:
    def test_delta_frame_shape(self):
        frame = encode_delta_frame("hi")
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame[len("data: "):]) == {
            "choices": [{"delta": {"content": "hi"}}]
        }

    def test_done_frame(self):
        assert DONE_FRAME == "data: [DONE]\n\n"

    def test_round_trip_through_decoder(self):
        deltas = ["line one\n", 'quote " and unicode ☀', "\r\nCHIPS:a|b"]
        body = "".join(encode_delta_frame(d) for d in deltas) + DONE_FRAME
        assert _decode_body(body) == deltas


# ── Relay endpoint ────────────────────────────────────────────────


class TestRelayApp:
    def test_health(self):
        response = _client(_FakeGateway()).get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_streams_event_frames(self):
        gateway = _FakeGateway(deltas=["I hear ", "you.\nCHIPS:Thanks|More"])
        response = _client(gateway).post("/buddyChat", json=_BODY)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.text.endswith(DONE_FRAME)

        deltas = _decode_body(response.text)
        assert deltas == ["I hear ", "you.\nCHIPS:Thanks|More"]
        parsed = parse_response("".join(deltas))
        assert parsed.display_text == "I hear you."
        assert parsed.chips == ["Thanks", "More"]

    def test_prompt_built_from_mode_and_preferences(self):
        gateway = _FakeGateway(deltas=["ok"])
        body = {**_BODY, "mode": "intake", "preferences": {"buddy_name": "Juniper"}}
        _client(gateway).post("/buddyChat", json=body)

        messages, system = gateway.calls[0]
        assert messages == [{"role": "user", "content": "rough night"}]
        assert "Juniper" in system
        assert "[INTAKE_COMPLETE]" in system

    @pytest.mark.parametrize(("status", "message"), [
        (429, RATE_LIMIT_MESSAGE),
        (402, CREDITS_MESSAGE),
        (500, GATEWAY_ERROR_MESSAGE),
    ])
    def test_gateway_errors_become_json(self, status, message):
        gateway = _FakeGateway(error=GatewayError(status, message))
        response = _client(gateway).post("/buddyChat", json=_BODY)

        assert response.status_code == status
        assert response.json() == {"error": message}

    def test_mid_stream_failure_ends_without_done(self):
        gateway = _FakeGateway(deltas=["kept", "lost"], fail_after=1)
        response = _client(gateway).post("/buddyChat", json=_BODY)

        assert response.status_code == 200
        assert "[DONE]" not in response.text
        assert _decode_body(response.text) == ["kept"]

    def test_invalid_body_rejected(self):
        response = _client(_FakeGateway()).post("/buddyChat", json={"messages": "nope"})
        assert response.status_code == 422


# ── Gateway ───────────────────────────────────────────────────────


class TestChatGateway:
    @pytest.fixture(autouse=True)
    def _gateway_key(self, monkeypatch):
        monkeypatch.setenv("BUDDY_TEST_GATEWAY_KEY", "gw-test")

    @pytest.mark.asyncio
    async def test_streams_deltas(self):
        gateway = ChatGateway(_gateway_settings())
        with patch(_ACOMP, new_callable=AsyncMock) as mock:
            mock.return_value = _mock_stream("Hello", None, "", " there")
            deltas = await gateway.open_stream(
                [{"role": "user", "content": "hi"}], "be kind"
            )
            received = [d async for d in deltas]

        assert received == ["Hello", " there"]
        kwargs = mock.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["model"] == "gemini/gemini-2.5-flash"
        assert kwargs["api_key"] == "gw-test"
        assert kwargs["messages"][0] == {"role": "system", "content": "be kind"}
        assert "api_base" not in kwargs

    @pytest.mark.asyncio
    async def test_api_base_forwarded(self):
        gateway = ChatGateway(_gateway_settings(api_base="https://gw.test/v1"))
        with patch(_ACOMP, new_callable=AsyncMock) as mock:
            mock.return_value = _mock_stream("x")
            await gateway.open_stream([], "s")
        assert mock.call_args.kwargs["api_base"] == "https://gw.test/v1"

    @pytest.mark.asyncio
    async def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("BUDDY_TEST_GATEWAY_KEY")
        gateway = ChatGateway(_gateway_settings())
        with patch(_ACOMP, new_callable=AsyncMock) as mock, pytest.raises(GatewayError) as exc_info:
            await gateway.open_stream([], "s")

        assert exc_info.value.status_code == 500
        assert "BUDDY_TEST_GATEWAY_KEY" in exc_info.value.message
        mock.assert_not_called()

    @pytest.mark.asyncio
    async def test_retries_on_rate_limit(self):
        gateway = ChatGateway(_gateway_settings())
        mock_acomp = AsyncMock(side_effect=[
            litellm.RateLimitError(message="rate limited", model="test", llm_provider="test"),
            _mock_stream("recovered"),
        ])
        with patch(_ACOMP, mock_acomp), patch(_SLEEP, new_callable=AsyncMock) as sleep:
            deltas = await gateway.open_stream([], "s")
            received = [d async for d in deltas]

        assert received == ["recovered"]
        assert mock_acomp.call_count == 2
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted_maps_to_429(self):
        gateway = ChatGateway(_gateway_settings())
        mock_acomp = AsyncMock(side_effect=litellm.RateLimitError(
            message="rate limited", model="test", llm_provider="test",
        ))
        with (
            patch(_ACOMP, mock_acomp),
            patch(_SLEEP, new_callable=AsyncMock),
            pytest.raises(GatewayError) as exc_info,
        ):
            await gateway.open_stream([], "s")

        assert exc_info.value.status_code == 429
        assert exc_info.value.message == RATE_LIMIT_MESSAGE
        assert mock_acomp.call_count == 3

    @pytest.mark.asyncio
    async def test_payment_required_maps_to_402(self):
        gateway = ChatGateway(_gateway_settings())
        mock_acomp = AsyncMock(side_effect=litellm.APIError(
            status_code=402, message="payment required", model="test", llm_provider="test",
        ))
        with patch(_ACOMP, mock_acomp), pytest.raises(GatewayError) as exc_info:
            await gateway.open_stream([], "s")

        assert exc_info.value.status_code == 402
        assert exc_info.value.message == CREDITS_MESSAGE
        assert mock_acomp.call_count == 1

    @pytest.mark.asyncio
    async def test_auth_error_not_retried(self):
        gateway = ChatGateway(_gateway_settings())
        mock_acomp = AsyncMock(side_effect=litellm.AuthenticationError(
            message="bad key", model="test", llm_provider="test",
        ))
        with patch(_ACOMP, mock_acomp), pytest.raises(GatewayError) as exc_info:
            await gateway.open_stream([], "s")

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == GATEWAY_ERROR_MESSAGE
        assert mock_acomp.call_count == 1

    @pytest.mark.asyncio
    async def test_timeouts_exhausted_map_to_500(self):
        gateway = ChatGateway(_gateway_settings(max_retries=2))
        mock_acomp = AsyncMock(side_effect=TimeoutError())
        with (
            patch(_ACOMP, mock_acomp),
            patch(_SLEEP, new_callable=AsyncMock),
            pytest.raises(GatewayError) as exc_info,
        ):
            await gateway.open_stream([], "s")

        assert exc_info.value.status_code == 500
        assert mock_acomp.call_count == 2
