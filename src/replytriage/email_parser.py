"""Turns raw RFC 822 messages into the read-only Message view."""

from __future__ import annotations

import html
import logging
import re
from email import message_from_bytes
from email.header import decode_header, make_header
from email.message import Message as RawMessage

from replytriage.mailbox import Message

logger = logging.getLogger(__name__)


class EmailParser:
    """Extracts the subject and plain-text body of a message."""

    def __init__(self, max_body_chars: int = 20000):
        """Initialize the parser.

        Args:
            max_body_chars: Upper bound on the extracted body length
        """
        self.max_body_chars = max_body_chars

    def parse_bytes(self, message_id: str, raw_email: bytes) -> Message:
        """Parse raw message bytes as fetched over IMAP."""
        return self.parse(message_id, message_from_bytes(raw_email))

    def parse(self, message_id: str, raw: RawMessage) -> Message:
        """Build a Message from a parsed email.message.Message."""
        subject = self._decode_header(raw.get("Subject"))
        body = self._extract_text_content(raw).strip()
        if len(body) > self.max_body_chars:
            body = body[: self.max_body_chars]
        return Message(id=message_id, subject=subject, plain_body=body)

    def _decode_header(self, value: str | None) -> str:
        """Safely decode an encoded-word header."""
        if not value:
            return ""
        try:
            return str(make_header(decode_header(value)))
        except Exception:
            # Malformed encoded words are kept as-is
            return str(value)

    def _extract_text_content(self, raw: RawMessage) -> str:
        """Return the first text/plain part, falling back to stripped HTML."""
        if not raw.is_multipart():
            content_type = raw.get_content_type()
            if content_type == "text/plain":
                return self._decode_payload(raw)
            if content_type == "text/html":
                return self._html_to_text(self._decode_payload(raw))
            return ""

        html_fallback = None
        for part in raw.walk():
            if "attachment" in str(part.get("Content-Disposition", "")):
                continue
            content_type = part.get_content_type()
            if content_type == "text/plain":
                return self._decode_payload(part)
            if content_type == "text/html" and html_fallback is None:
                html_fallback = part

        if html_fallback is not None:
            return self._html_to_text(self._decode_payload(html_fallback))
        return ""

    def _decode_payload(self, part: RawMessage) -> str:
        payload = part.get_payload(decode=True)
        if payload is None:
            return ""
        if not isinstance(payload, bytes):
            return str(payload)
        charset = part.get_content_charset() or "utf-8"
        try:
            return payload.decode(charset, errors="replace")
        except LookupError:
            logger.debug(f"Unknown charset {charset!r}, decoding as utf-8")
            return payload.decode("utf-8", errors="replace")

    def _html_to_text(self, html_content: str) -> str:
        """Simple HTML to text conversion."""
        text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", html_content, flags=re.DOTALL | re.IGNORECASE)
        text = re.sub(r"<br\s*/?>|</p>", "\n", text, flags=re.IGNORECASE)
        text = re.sub(r"<[^>]+>", " ", text)
        text = html.unescape(text)
        text = re.sub(r"[ \t]+", " ", text)
        text = re.sub(r"\n\s*\n+", "\n\n", text)
        return text.strip()
