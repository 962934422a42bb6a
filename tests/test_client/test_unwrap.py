"""Tests for envelope decoding and payload unwrapping."""

from __future__ import annotations

import httpx
import pytest

from komikcast.client.response import (
    ENVELOPE_FAILED_MESSAGE,
    Enveloped,
    RawPayload,
    decode_body,
    extract_response_data,
    unwrap_payload,
)
from komikcast.exceptions import NotFoundError, UnknownError, ValidationError


class TestExtractResponseData:
    def test_json(self) -> None:
        assert extract_response_data(httpx.Response(200, json={"a": 1})) == {"a": 1}

    def test_text(self) -> None:
        assert extract_response_data(httpx.Response(200, text="hello")) == "hello"

    def test_empty(self) -> None:
        assert extract_response_data(httpx.Response(204)) is None


class TestDecodeBody:
    def test_envelope_with_data(self) -> None:
        decoded = decode_body({"status": "success", "data": [1]})
        assert isinstance(decoded, Enveloped)
        assert decoded.tag == "enveloped"
        assert decoded.succeeded
        assert decoded.has_data
        assert decoded.data == [1]

    def test_envelope_with_null_data_still_has_data(self) -> None:
        decoded = decode_body({"status": "success", "data": None})
        assert isinstance(decoded, Enveloped)
        assert decoded.has_data
        assert unwrap_payload({"status": "success", "data": None}) is None

    def test_envelope_message_falls_back_to_error(self) -> None:
        decoded = decode_body({"status": "error", "error": "boom"})
        assert isinstance(decoded, Enveloped)
        assert decoded.message == "boom"
        assert not decoded.succeeded

    @pytest.mark.parametrize("body", [[1, 2], "text", 3, {"title": "no status"}])
    def test_raw(self, body) -> None:
        decoded = decode_body(body)
        assert isinstance(decoded, RawPayload)
        assert decoded.tag == "raw"
        assert decoded.payload == body


class TestUnwrapPayload:
    def test_success_data(self) -> None:
        assert unwrap_payload({"status": "success", "data": {"title": "X"}}) == {"title": "X"}

    def test_success_without_data_drops_status(self) -> None:
        body = {"status": "success", "title": "Ch 1", "panel": []}
        assert unwrap_payload(body) == {"title": "Ch 1", "panel": []}

    def test_failure_with_known_message(self) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            unwrap_payload({"status": "error", "message": "Chapter not found"})
        assert exc_info.value.message == "Chapter tidak ditemukan."

    def test_failure_with_validation_message(self) -> None:
        with pytest.raises(ValidationError):
            unwrap_payload({"status": False, "message": "keyword is required"})

    def test_failure_without_message(self) -> None:
        with pytest.raises(UnknownError) as exc_info:
            unwrap_payload({"status": "error"})
        assert exc_info.value.message == ENVELOPE_FAILED_MESSAGE

    def test_raw_body(self) -> None:
        assert unwrap_payload([{"title": "A"}]) == [{"title": "A"}]

    def test_empty_body(self) -> None:
        with pytest.raises(UnknownError):
            unwrap_payload(None)
