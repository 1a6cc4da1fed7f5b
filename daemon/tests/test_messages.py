"""Tests for message payload helpers."""

import base64

import pytest

from paird.errors import MessageError
from paird.messages import decode_media, media_payload, recipient_address, text_payload


class TestRecipientAddress:
    """Tests for recipient_address()."""

    def test_strips_formatting(self):
        assert recipient_address("+1 (555) 010-0000") == "15550100000@s.whatsapp.net"

    def test_custom_suffix(self):
        assert recipient_address("4915100", "@c.us") == "4915100@c.us"

    def test_full_address_unchanged(self):
        assert recipient_address("12036304@g.us") == "12036304@g.us"

    @pytest.mark.parametrize("phone", ["", "call me", "+ ( ) -"])
    def test_rejects_no_digits(self, phone):
        with pytest.raises(MessageError):
            recipient_address(phone)


class TestPayloads:
    """Tests for payload builders."""

    def test_text_payload(self):
        assert text_payload("hi") == {"text": "hi"}

    def test_empty_text(self):
        with pytest.raises(MessageError):
            text_payload("")

    def test_decode_media(self):
        assert decode_media(base64.b64encode(b"img").decode()) == b"img"

    def test_decode_invalid_media(self):
        with pytest.raises(MessageError):
            decode_media("not base64!")

    def test_media_payload_with_caption(self):
        payload = media_payload(b"img", "image/jpeg", "caption")

        assert payload == {"image": b"img", "mimetype": "image/jpeg", "caption": "caption"}

    def test_media_payload_without_caption(self):
        assert "caption" not in media_payload(b"img", "image/jpeg")

    def test_empty_media(self):
        with pytest.raises(MessageError):
            media_payload(b"", "image/jpeg")
