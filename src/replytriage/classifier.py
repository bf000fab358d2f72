"""Classifier client: asks the generation service whether a message needs a reply."""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from replytriage.exceptions import ClassificationError

if TYPE_CHECKING:
    from replytriage.config import GeminiConfig
    from replytriage.mailbox import Message

logger = logging.getLogger(__name__)


class Verdict(BaseModel):
    """Classification output schema. Exactly one boolean key."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, strict=True, frozen=True)

    requires_response: bool = Field(alias="requiresResponse")


CLASSIFICATION_PROMPT = """You are an email triage assistant. Decide whether the recipient of the email below needs to respond to it personally.

Respond is REQUIRED when any of these apply:
(a) The email asks the recipient a direct question addressed to them personally.
(b) The email requests a deliverable that the recipient owns (a document, an answer, a fix, a payment).
(c) The email explicitly asks the recipient to review, approve or decide something.
(d) The recipient started the conversation and it is now waiting on their own follow-up.

Respond is NOT required for:
- Automated or system notifications (alerts, receipts, shipping updates, password resets)
- Calendar invitations, updates and cancellations
- Mass announcements, newsletters and marketing
- Informational notes that ask for nothing
- Generic calls to action aimed at a broad audience ("sign up", "register now")
- Messages where the recipient is only copied for information

You MUST respond with a single JSON object and nothing else, with exactly one boolean key:
{{"requiresResponse": true}} or {{"requiresResponse": false}}

Subject: {subject}

Body:
{body}
"""

_FENCE_OPEN_RE = re.compile(r"^```[A-Za-z0-9_+-]*[ \t]*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?[ \t]*```$")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence and trim whitespace.

    A leading fence may carry a language tag (```json). Text without fences
    is only trimmed.
    """
    text = text.strip()
    text = _FENCE_OPEN_RE.sub("", text, count=1)
    text = _FENCE_CLOSE_RE.sub("", text, count=1)
    return text.strip()


def parse_verdict(text: str) -> Verdict:
    """Parse generated text into a Verdict.

    Raises:
        ClassificationError: If the text is not a JSON object of the expected shape
    """
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ClassificationError(f"Response is not valid JSON: {e.msg}") from e

    if not isinstance(data, dict):
        raise ClassificationError(f"Expected a JSON object, got {type(data).__name__}")
    try:
        return Verdict.model_validate(data)
    except ValidationError as e:
        raise ClassificationError(f"Unexpected verdict shape: {data}") from e


def extract_text(payload: Any) -> str:
    """Return ``candidates[0].content.parts[0].text`` from a response body."""
    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as e:
        reason = ""
        if isinstance(payload, dict):
            feedback = payload.get("promptFeedback")
            block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
            if block_reason:
                reason = f" (blocked: {block_reason})"
        raise ClassificationError(f"Response has no candidate text{reason}") from e
    if not isinstance(text, str):
        raise ClassificationError("Candidate text is not a string")
    return text


class GeminiClient:
    """Client for the generateContent endpoint."""

    def __init__(self, config: GeminiConfig, transport: httpx.BaseTransport | None = None):
        """Initialize the client.

        Raises:
            ValueError: If no API key is configured
        """
        self.config = config
        self._api_key = config.get_api_key()
        self._transport = transport
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.timeout, transport=self._transport)
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self) -> GeminiClient:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def build_prompt(self, message: Message) -> str:
        body = message.plain_body[: self.config.max_body_chars]
        return CLASSIFICATION_PROMPT.format(subject=message.subject or "(no subject)", body=body)

    def classify(self, message: Message) -> Verdict:
        """Classify one message.

        Raises:
            ClassificationError: On transport failure, non-success status or unusable output
        """
        prompt = self.build_prompt(message)
        text = self._generate(prompt)
        verdict = parse_verdict(text)
        logger.debug(f"Message {message.id}: requiresResponse={verdict.requires_response}")
        return verdict

    def _generate(self, prompt: str) -> str:
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        try:
            response = self._get_client().post(
                self.config.endpoint,
                params={"key": self._api_key},
                json=payload,
            )
        except httpx.TimeoutException as e:
            raise ClassificationError("Request timed out") from e
        except httpx.RequestError as e:
            # str(e) can include the request URL, which carries the key
            raise ClassificationError(f"Request failed: {type(e).__name__}") from e

        if not response.is_success:
            raise ClassificationError(f"API error: {response.status_code} - {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise ClassificationError("Response body is not valid JSON") from e
        return extract_text(data)
