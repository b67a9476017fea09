"""Tests for sqs_relay/relay/decoder.py: body strategies, header mapping, source IP."""

import base64
import json
import logging

import pytest

from sqs_relay.relay.decoder import MessageDecoder
from sqs_relay.relay.models import BodyEncoding, DecodeError


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class TestBodyDecoding:
    """Body bytes must match what the ingress originally received."""

    @pytest.mark.parametrize(
        "original",
        [
            b'{"zen": "Keep it logically awesome."}',
            b"",
            b"\x00\xff\xfe binary \r\n payload",
            "unicodé ✓".encode("utf-8"),
        ],
    )
    def test_base64_flag_decodes_exact_bytes(self, make_config, make_message, original):
        """With the flag set, body bytes are the base64 decode of the queued body."""
        decoder = MessageDecoder(make_config())
        message = make_message(body=_b64(original), attributes={"BodyIsBase64": "true"})

        request = decoder.decode(message)

        assert request.body == original
        assert request.encoding == BodyEncoding.BASE64

    @pytest.mark.parametrize("body", ['{"a": 1}', "", "plain text ✓", "eyJhIjogMX0="])
    def test_without_flag_body_is_raw_utf8(self, make_config, make_message, body):
        """Without the flag, even base64-looking bodies are forwarded verbatim."""
        decoder = MessageDecoder(make_config())

        request = decoder.decode(make_message(body=body))

        assert request.body == body.encode("utf-8")
        assert request.encoding == BodyEncoding.RAW

    def test_flag_false_is_raw(self, make_config, make_message):
        decoder = MessageDecoder(make_config())
        message = make_message(body="aGVsbG8=", attributes={"BodyIsBase64": "false"})

        assert decoder.decode(message).body == b"aGVsbG8="

    def test_flag_is_case_insensitive(self, make_config, make_message):
        """Both the attribute name and its value are compared without case."""
        decoder = MessageDecoder(make_config())
        message = make_message(body=_b64(b"hello"), attributes={"bodyisbase64": "TRUE"})

        assert decoder.decode(message).body == b"hello"

    def test_invalid_base64_raises_decode_error(self, make_config, make_message):
        decoder = MessageDecoder(make_config())
        message = make_message(
            body="this is not base64!!", attributes={"BodyIsBase64": "true"}, message_id="bad-1"
        )

        with pytest.raises(DecodeError) as exc_info:
            decoder.decode(message)

        assert exc_info.value.message_id == "bad-1"

    def test_custom_encoding_attribute(self, make_config, make_message):
        decoder = MessageDecoder(make_config(encoding_attribute="IsBase64Encoded"))
        message = make_message(body=_b64(b"xyz"), attributes={"IsBase64Encoded": "true"})

        assert decoder.decode(message).body == b"xyz"


class TestHeaderReconstruction:
    """Headers come from the configured attribute mapping only."""

    def test_known_attributes_become_headers(self, make_config, make_message):
        decoder = MessageDecoder(make_config())
        message = make_message(
            attributes={
                "Content-Type": "application/json",
                "X-GitHub-Event": "push",
                "X-GitHub-Delivery": "72d3162e",
                "X-Hub-Signature-256": "sha256=abc",
                "User-Agent": "GitHub-Hookshot/044aadd",
            }
        )

        headers = decoder.decode(message).headers

        assert headers == {
            "Content-Type": "application/json",
            "X-GitHub-Event": "push",
            "X-GitHub-Delivery": "72d3162e",
            "X-Hub-Signature-256": "sha256=abc",
            "User-Agent": "GitHub-Hookshot/044aadd",
        }

    def test_missing_optional_attribute_is_simply_absent(self, make_config, make_message):
        """A message without a signature attribute still decodes, without that header."""
        decoder = MessageDecoder(make_config())
        message = make_message(attributes={"X-GitHub-Event": "ping"})

        headers = decoder.decode(message).headers

        assert "X-Hub-Signature-256" not in headers
        assert headers["X-GitHub-Event"] == "ping"

    def test_attribute_names_match_case_insensitively(self, make_config, make_message):
        decoder = MessageDecoder(make_config())
        message = make_message(attributes={"x-github-event": "issues"})

        assert decoder.decode(message).headers["X-GitHub-Event"] == "issues"

    def test_generic_content_type_attribute_variant(self, make_config, make_message):
        """The template variant that writes ContentType maps to Content-Type."""
        decoder = MessageDecoder(make_config())
        message = make_message(attributes={"ContentType": "application/x-www-form-urlencoded"})

        headers = decoder.decode(message).headers

        assert headers["Content-Type"] == "application/x-www-form-urlencoded"

    def test_unknown_attributes_are_ignored(self, make_config, make_message):
        decoder = MessageDecoder(make_config())
        message = make_message(attributes={"SomethingElse": "x", "BodyIsBase64": "false"})

        headers = decoder.decode(message).headers

        assert headers == {"Content-Type": "application/json"}

    def test_default_content_type_applied_when_absent(self, make_config, make_message):
        decoder = MessageDecoder(make_config(default_content_type="text/plain"))

        assert decoder.decode(make_message()).headers == {"Content-Type": "text/plain"}

    @pytest.mark.parametrize("disabled", [None, ""])
    def test_default_content_type_disabled(self, make_config, make_message, disabled):
        decoder = MessageDecoder(make_config(default_content_type=disabled))

        assert decoder.decode(make_message()).headers == {}

    def test_mapping_is_configuration_driven(self, make_config, make_message):
        decoder = MessageDecoder(
            make_config(header_attributes={"StripeSignature": "Stripe-Signature"})
        )
        message = make_message(
            attributes={"StripeSignature": "t=1,v1=abc", "X-GitHub-Event": "push"}
        )

        headers = decoder.decode(message).headers

        assert headers["Stripe-Signature"] == "t=1,v1=abc"
        assert "X-GitHub-Event" not in headers

    def test_forward_all_attributes(self, make_config, make_message):
        """All string attributes except the encoding flag become lowercase headers."""
        decoder = MessageDecoder(make_config(forward_all_attributes=True))
        message = make_message(
            attributes={"X-Custom-Thing": "1", "BodyIsBase64": "false", "X-GitHub-Event": "push"}
        )

        headers = decoder.decode(message).headers

        assert headers["x-custom-thing"] == "1"
        assert headers["X-GitHub-Event"] == "push"
        assert not any(name.lower() == "bodyisbase64" for name in headers)

    def test_invalid_header_values_are_skipped(self, make_config, make_message):
        decoder = MessageDecoder(make_config())
        message = make_message(attributes={"X-GitHub-Event": "push\r\nX-Evil: 1"})

        assert "X-GitHub-Event" not in decoder.decode(message).headers

    @pytest.mark.parametrize("value", ["push\n", "push\r", "push\x00", "\n"])
    def test_trailing_control_characters_are_skipped(self, make_config, make_message, value):
        decoder = MessageDecoder(make_config())
        message = make_message(attributes={"X-GitHub-Event": value, "X-GitHub-Delivery": "abc-123"})

        headers = decoder.decode(message).headers

        assert "X-GitHub-Event" not in headers
        assert headers["X-GitHub-Delivery"] == "abc-123"

    def test_header_name_with_trailing_newline_is_skipped(self, make_config, make_message):
        decoder = MessageDecoder(make_config(forward_all_attributes=True))
        message = make_message(attributes={"X-Custom\n": "value"})

        headers = decoder.decode(message).headers

        assert not any(name.lower().startswith("x-custom") for name in headers)

    def test_missing_signature_is_logged_as_warning(self, make_config, make_message, caplog):
        decoder = MessageDecoder(make_config())
        message = make_message(attributes={"X-GitHub-Event": "push"}, message_id="unsigned-1")

        with caplog.at_level(logging.WARNING, logger="sqs_relay.relay.decoder"):
            decoder.decode(message)

        assert "unsigned-1 has no signature attribute" in caplog.text

    def test_signed_message_is_not_warned_about(self, make_config, make_message, caplog):
        decoder = MessageDecoder(make_config())
        message = make_message(attributes={"X-Hub-Signature-256": "sha256=abc"})

        with caplog.at_level(logging.WARNING, logger="sqs_relay.relay.decoder"):
            decoder.decode(message)

        assert "no signature attribute" not in caplog.text

    def test_target_url_and_method(self, make_config, make_message):
        decoder = MessageDecoder(make_config(target_url="http://localhost:9000/hook"))

        request = decoder.decode(make_message())

        assert request.target_url == "http://localhost:9000/hook"
        assert request.method == "POST"


class TestSourceIp:
    """X-Forwarded-For is filled from a source address when one is known."""

    def test_source_ip_from_attribute(self, make_config, make_message):
        decoder = MessageDecoder(make_config())
        message = make_message(attributes={"sourceIp": "203.0.113.7"})

        request = decoder.decode(message)

        assert request.source_ip == "203.0.113.7"
        assert request.headers["X-Forwarded-For"] == "203.0.113.7"

    def test_source_ip_from_json_body(self, make_config, make_message):
        decoder = MessageDecoder(make_config())
        body = json.dumps({"requestContext": {"identity": {"sourceIp": "198.51.100.2"}}})

        request = decoder.decode(make_message(body=body))

        assert request.headers["X-Forwarded-For"] == "198.51.100.2"

    def test_appends_to_existing_forwarded_for(self, make_config, make_message):
        decoder = MessageDecoder(
            make_config(header_attributes={"X-Forwarded-For": "X-Forwarded-For"})
        )
        message = make_message(
            attributes={"X-Forwarded-For": "10.0.0.1", "client-ip": "203.0.113.9"}
        )

        headers = decoder.decode(message).headers

        assert headers["X-Forwarded-For"] == "10.0.0.1, 203.0.113.9"

    def test_no_source_ip(self, make_config, make_message):
        decoder = MessageDecoder(make_config())

        request = decoder.decode(make_message(body="not json"))

        assert request.source_ip is None
        assert "X-Forwarded-For" not in request.headers
