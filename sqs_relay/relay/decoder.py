"""
Message Decoder for the SQS relay.

Turns a queued message back into the HTTP request the ingress received:
- Body bytes, using the encoding flag attribute to pick the strategy
- Headers, from a configurable attribute -> header mapping
- X-Forwarded-For, from a source address attribute or the JSON body
"""

import base64
import binascii
import logging
from typing import Dict, Optional

from sqs_relay.relay.config import RelayConfig
from sqs_relay.relay.models import (
    BodyEncoding,
    DecodeError,
    ForwardRequest,
    QueuedMessage,
)
from sqs_relay.utils import (
    extract_ip_from_json,
    find_source_ip,
    is_valid_header_name,
    is_valid_header_value,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-hub-signature-256", "x-hub-signature")


class MessageDecoder:
    """
    Reconstructs ForwardRequests from QueuedMessages.

    The decoder does not care which ingress template produced a message:
    the encoding flag alone selects raw or base64 decoding, and any header
    attribute missing from the message is simply left out.
    """

    def __init__(self, config: RelayConfig):
        self.config = config
        # Lowercased attribute name -> header name
        self._header_map = {
            attr.lower(): header for attr, header in config.header_attributes.items()
        }
        self._encoding_attr = config.encoding_attribute.lower()

    def encoding_of(self, message: QueuedMessage) -> BodyEncoding:
        """Select the body strategy from the encoding flag attribute."""
        flag = message.get_attribute(self.config.encoding_attribute)
        if flag is not None and flag.strip().lower() == "true":
            return BodyEncoding.BASE64
        return BodyEncoding.RAW

    def decode_body(self, message: QueuedMessage, encoding: BodyEncoding) -> bytes:
        """
        Recover the original request bytes.

        Raises:
            DecodeError: If the flag claims base64 but the body is not valid base64
        """
        if encoding == BodyEncoding.BASE64:
            try:
                return base64.b64decode(message.body.strip(), validate=True)
            except (binascii.Error, ValueError) as e:
                raise DecodeError(message.message_id, f"invalid base64 body ({e})")
        return message.body.encode("utf-8")

    def build_headers(self, message: QueuedMessage) -> Dict[str, str]:
        """Map known attributes to headers; unknown or missing ones are skipped."""
        headers: Dict[str, str] = {}

        for name, value in message.attributes.items():
            lowered = name.lower()
            if lowered == self._encoding_attr:
                continue

            header = self._header_map.get(lowered)
            if header is None and self.config.forward_all_attributes:
                header = lowered
            if header is None:
                continue

            if not is_valid_header_name(header) or not is_valid_header_value(value):
                logger.warning(
                    f"Skipping attribute '{name}' on message {message.message_id}: "
                    f"not a valid header"
                )
                continue
            headers[header] = value

        if self.config.default_content_type and not _has_header(headers, "content-type"):
            headers["Content-Type"] = self.config.default_content_type

        return headers

    def decode(self, message: QueuedMessage) -> ForwardRequest:
        """
        Decode one queued message.

        Args:
            message: The message as received from the queue

        Returns:
            ForwardRequest ready to send to the local target

        Raises:
            DecodeError: On an invalid base64 body (permanent for this message)
        """
        encoding = self.encoding_of(message)
        body = self.decode_body(message, encoding)
        headers = self.build_headers(message)

        source_ip = find_source_ip(message.attributes) or extract_ip_from_json(body)
        if source_ip and is_valid_header_value(source_ip):
            existing = _get_header(headers, "x-forwarded-for")
            if existing:
                _drop_header(headers, "x-forwarded-for")
                headers["X-Forwarded-For"] = f"{existing}, {source_ip}"
            else:
                headers["X-Forwarded-For"] = source_ip

        if not any(_has_header(headers, name) for name in SIGNATURE_HEADERS):
            logger.warning(
                f"Message {message.message_id} has no signature attribute; "
                f"signature verification downstream will fail"
            )

        logger.debug(
            f"Decoded message {message.message_id}: encoding={encoding.value}, "
            f"{len(body)} bytes, headers={sorted(headers)}"
        )

        return ForwardRequest(
            target_url=self.config.target_url,
            headers=headers,
            body=body,
            encoding=encoding,
            source_ip=source_ip,
        )


def _has_header(headers: Dict[str, str], name: str) -> bool:
    return _get_header(headers, name) is not None


def _get_header(headers: Dict[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def _drop_header(headers: Dict[str, str], name: str) -> None:
    for key in [k for k in headers if k.lower() == name]:
        del headers[key]
