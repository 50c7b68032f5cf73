"""Forward meeting transcripts to the n8n automation webhook."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from relay.core.logging import get_logger
from relay.core.settings import Settings
from relay.domain.transcript import utc_iso, utc_now_iso
from relay.models.schema import Bot, Intervention

logger = get_logger(__name__)

SOURCE_NAME = "meet-audio-processor"


class N8nDeliveryError(Exception):
    """Transcript could not be delivered; ``status_code`` is the HTTP status to answer with."""

    def __init__(self, message: str, *, status_code: int = 500, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


@dataclass(frozen=True)
class N8nDeliveryResult:
    response_status: int
    total_interventions: int | None


def summarize_error_response(response: httpx.Response) -> str:
    """Short, human readable description of a failed webhook response."""
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            return str(data.get("message") or data.get("error") or json.dumps(data))
        if data is not None:
            return json.dumps(data)

    body = response.text
    if "<!DOCTYPE" in body:
        return (
            f"n8n webhook returned HTML error page (status {response.status_code}). "
            "Please check the webhook URL configuration."
        )
    if body:
        return body[:200]
    return f"HTTP {response.status_code}: {response.reason_phrase or 'Unknown error'}"


def _iso_or_empty(value: datetime | None) -> str:
    return utc_iso(value) if value is not None else ""


def build_transcript_file(interventions: list[Intervention]) -> bytes:
    transcript_data = [
        {
            "speaker": row.participant_name,
            "participant_id": row.participant_id,
            "text": row.text,
            "timestamp": row.timestamp,
            "provider": row.provider,
        }
        for row in interventions
    ]
    return json.dumps({"transcript_data": transcript_data}, indent=2).encode("utf-8")


def build_form_fields(bot: Bot, requested_bot_id: str, total: int) -> dict[str, str]:
    now = utc_now_iso()
    return {
        "timestamp": now,
        "meeting_url": bot.meeting_url,
        "bot_name": bot.bot_name,
        "bot_id": requested_bot_id,
        "recall_bot_id": bot.recall_bot_id,
        "total_interventions": str(total),
        "source": SOURCE_NAME,
        "processed_at": now,
        "call_started_at": _iso_or_empty(bot.call_started_at),
        "call_ended_at": _iso_or_empty(bot.call_ended_at),
    }


class N8nExporter:
    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send_finalized_transcript(
        self,
        bot: Bot,
        interventions: list[Intervention],
        *,
        requested_bot_id: str | None = None,
    ) -> N8nDeliveryResult:
        """POST the finalized interventions of ``bot`` as a multipart JSON file.

        Args:
            bot: Stored bot record
            interventions: Finalized interventions ordered by timestamp
            requested_bot_id: Id the caller used to address the bot, echoed in
                the file name and ``bot_id`` field; defaults to the record id

        Raises:
            N8nDeliveryError: 400 with no interventions, 500 when the webhook
                url is not set, 502 when n8n fails
        """
        bot_ref = requested_bot_id or bot.id
        if not interventions:
            raise N8nDeliveryError("No transcript data found for this bot", status_code=400)

        response_status = await self._post_transcript(
            file_name=f"transcript-{bot.bot_name}-{bot_ref}.json",
            file_body=build_transcript_file(interventions),
            fields=build_form_fields(bot, bot_ref, len(interventions)),
            operation="send_finalized_transcript",
            item_id=bot.recall_bot_id,
        )
        return N8nDeliveryResult(
            response_status=response_status, total_interventions=len(interventions)
        )

    async def send_transcript_data(
        self,
        transcript_data: list[Any],
        *,
        meeting_url: str | None = None,
        total_interventions: int | None = None,
        timestamp: str | None = None,
    ) -> N8nDeliveryResult:
        """POST a transcript assembled by the client, as ``transcript.json``.

        Metadata fields are only sent when given.

        Raises:
            N8nDeliveryError: 400 when ``transcript_data`` is empty, 500 when
                the webhook url is not set, 502 when n8n fails
        """
        if not transcript_data:
            raise N8nDeliveryError("No transcript data to send", status_code=400)

        fields: dict[str, str] = {}
        if timestamp:
            fields["timestamp"] = str(timestamp)
        if meeting_url:
            fields["meeting_url"] = str(meeting_url)
        if total_interventions is not None:
            fields["total_interventions"] = str(total_interventions)
        fields["source"] = SOURCE_NAME
        fields["processed_at"] = utc_now_iso()

        response_status = await self._post_transcript(
            file_name="transcript.json",
            file_body=json.dumps({"transcript_data": transcript_data}, indent=2).encode("utf-8"),
            fields=fields,
            operation="send_transcript_data",
            item_id=meeting_url,
        )
        return N8nDeliveryResult(
            response_status=response_status, total_interventions=total_interventions
        )

    async def _post_transcript(
        self,
        *,
        file_name: str,
        file_body: bytes,
        fields: dict[str, str],
        operation: str,
        item_id: str | None,
    ) -> int:
        if not self._settings.n8n_webhook_url:
            raise N8nDeliveryError(
                "N8N_WEBHOOK_URL environment variable is not configured", status_code=500
            )

        logger.info(
            "Sending transcript to n8n",
            extra={
                "component": "n8n_export",
                "operation": operation,
                "item_id": item_id,
                "context_data": {"file_name": file_name, "file_bytes": len(file_body)},
            },
        )

        try:
            response = await self._client.post(
                self._settings.n8n_webhook_url,
                data=fields,
                files={"file": (file_name, file_body, "application/json")},
                timeout=self._settings.n8n_timeout_seconds,
            )
        except httpx.HTTPError as exc:
            logger.error(
                "n8n webhook request failed",
                extra={
                    "component": "n8n_export",
                    "operation": operation,
                    "item_id": item_id,
                    "context_data": {"error": str(exc)},
                },
            )
            raise N8nDeliveryError(
                "Failed to send transcript to n8n", status_code=502, details=str(exc)
            ) from exc

        if response.is_error:
            details = summarize_error_response(response)
            logger.error(
                "n8n webhook rejected transcript",
                extra={
                    "component": "n8n_export",
                    "operation": operation,
                    "item_id": item_id,
                    "context_data": {"status_code": response.status_code, "details": details},
                },
            )
            raise N8nDeliveryError(
                "Failed to send transcript to n8n", status_code=502, details=details
            )

        return response.status_code
