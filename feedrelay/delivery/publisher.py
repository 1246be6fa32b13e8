"""
Note Publisher
=============

Builds the note payload and submits it to ``notes/create``. A note either
exists with every supplied file attached or does not exist at all.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field, field_validator

from ..clients.misskey_client import MisskeyClient
from ..config.settings import FeedRelaySettings, Visibility, get_settings
from ..utils.exceptions import ErrorCode, ExternalServiceError, PublishError
from ..utils.logging import get_logger_for_component


PUBLISH_SUCCESS_STATUS = 200
TRUNCATION_SUFFIX = "…"


class PostPayload(BaseModel):
    """Note body sent to the social API."""
    text: Optional[str] = Field(default=None, description="Note text")
    visibility: Visibility = Field(default=Visibility.PUBLIC)
    media_ids: List[str] = Field(default_factory=list, description="Resolved drive file ids, in order")

    @field_validator("media_ids")
    @classmethod
    def validate_media_ids(cls, v):
        if any(not media_id for media_id in v):
            raise ValueError("media ids must be resolved before publishing")
        return v

    def to_request(self) -> dict:
        body = {"text": self.text or None, "visibility": self.visibility.value}
        if self.media_ids:
            body["fileIds"] = list(self.media_ids)
        return body


@dataclass
class PublishResult:
    """Outcome of a successful publish."""
    status_code: int
    note_id: Optional[str] = None


class NotePublisher:
    """Publishes notes to Misskey."""

    def __init__(self, client: MisskeyClient, settings: Optional[FeedRelaySettings] = None):
        self.client = client
        self.settings = settings or get_settings()
        self.visibility = self.settings.misskey.visibility
        self.max_text_length = self.settings.misskey.max_text_length
        self.logger = get_logger_for_component("publisher")

    def build_payload(self, text: str, media_ids: Sequence[str] = ()) -> PostPayload:
        """Assemble a payload, truncating text to the configured limit.

        Raises:
            PublishError: If any media id is empty
        """
        if len(text) > self.max_text_length:
            keep = max(self.max_text_length - len(TRUNCATION_SUFFIX), 0)
            text = text[:keep].rstrip() + TRUNCATION_SUFFIX

        if any(not media_id for media_id in media_ids):
            raise PublishError(
                "Refusing to publish with unresolved media",
                error_code=ErrorCode.PUBLISH_INVALID_PAYLOAD,
                recoverable=False,
            )

        return PostPayload(text=text, visibility=self.visibility, media_ids=list(media_ids))

    async def publish(self, payload: PostPayload) -> PublishResult:
        """Submit a note.

        Returns:
            PublishResult with the created note id when the API reports one

        Raises:
            PublishError: On any status other than 200, or on transport failure
        """
        if not payload.text and not payload.media_ids:
            raise PublishError(
                "Refusing to publish an empty note",
                error_code=ErrorCode.PUBLISH_INVALID_PAYLOAD,
                recoverable=False,
            )

        try:
            response = await self.client.call("notes/create", payload.to_request())
        except ExternalServiceError as e:
            raise PublishError(
                f"Publish request failed: {e}",
                error_code=ErrorCode.PUBLISH_FAILED,
            ) from e

        if response.status != PUBLISH_SUCCESS_STATUS:
            raise PublishError(
                f"Notes API rejected the post with HTTP {response.status}",
                status_code=response.status,
                context={"response": response.data},
            )

        note_id = None
        if isinstance(response.data, dict):
            note_id = (response.data.get("createdNote") or {}).get("id")

        self.logger.info(
            f"Published note {note_id or '(id unknown)'} with {len(payload.media_ids)} file(s)"
        )
        return PublishResult(status_code=response.status, note_id=note_id)
