"""Client for the meeting-bot provider REST API."""

from __future__ import annotations

import re
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from relay.core.logging import get_logger
from relay.core.settings import ConfigurationError, Settings

logger = get_logger(__name__)

TRANSCRIPT_WEBHOOK_EVENTS = ["transcript.data", "transcript.partial_data"]

JPEG_DATA_URL_PREFIX = "data:image/jpeg;base64,"
_JPEG_DATA_URL_PREFIX = re.compile("^" + re.escape(JPEG_DATA_URL_PREFIX))


class RecallApiError(Exception):
    """Provider request failed; ``details`` carries the response body when there was one."""

    def __init__(self, message: str, *, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class TranscriptNotReadyError(RecallApiError):
    """The bot has no finished post-call transcript yet."""


class _RetryableStatusError(Exception):
    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def _response_details(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]


def build_transcript_config(transcription_type: str, language: str, model: str = "nova-2") -> dict:
    if transcription_type == "ai_transcription":
        return {
            "provider": {
                "deepgram_streaming": {
                    "language": "en-US" if language == "auto" else language,
                    "model": model,
                }
            },
            "diarization": {"use_separate_streams_when_available": True},
        }
    return {"provider": {"meeting_captions": {}}}


def build_bot_config(
    meeting_url: str,
    bot_name: str,
    transcription_type: str,
    language: str,
    bot_photo: str | None = None,
    *,
    webhook_base_url: str,
    model: str = "nova-2",
) -> dict:
    """Build the provider's bot creation body.

    ``bot_photo`` is base64 jpeg data, with or without a data-URL prefix.
    """
    config: dict[str, Any] = {
        "meeting_url": meeting_url,
        "bot_name": bot_name,
        "recording_config": {
            "transcript": build_transcript_config(transcription_type, language, model),
            "realtime_endpoints": [
                {
                    "type": "webhook",
                    "url": f"{webhook_base_url.rstrip('/')}/webhook/transcription",
                    "events": list(TRANSCRIPT_WEBHOOK_EVENTS),
                }
            ],
        },
    }
    if bot_photo:
        config["automatic_video_output"] = {
            "in_call_recording": {
                "kind": "jpeg",
                "b64_data": _JPEG_DATA_URL_PREFIX.sub("", bot_photo),
            }
        }
    return config


def latest_transcript_download_url(bot_data: dict) -> str:
    """Download url of the latest recording's transcript.

    Raises:
        TranscriptNotReadyError: no recordings, or the transcript is not done
    """
    recordings = bot_data.get("recordings") or []
    if not recordings:
        raise TranscriptNotReadyError("No recordings found for this bot", status_code=404)

    latest = recordings[-1]
    transcript = (latest.get("media_shortcuts") or {}).get("transcript") or {}
    status_code = (transcript.get("status") or {}).get("code") or "unknown"
    if status_code != "done":
        raise TranscriptNotReadyError(
            "Transcript not ready yet", status_code=404, details={"status": status_code}
        )
    return transcript["data"]["download_url"]


class RecallClient:
    """Async provider client with retries for transport errors and 5xx responses.

    4xx responses are never retried.
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
        *,
        retry_wait=None,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=settings.http_timeout_seconds, connect=10.0)
        )
        self._owns_client = client is None
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=8)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _auth_headers(self) -> dict[str, str]:
        if not self._settings.recall_api_key:
            raise ConfigurationError("recall_api_key")
        return {
            "Authorization": f"Token {self._settings.recall_api_key}",
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self._settings.recall_api_url.rstrip('/')}/{path.lstrip('/')}"

    async def _send_once(self, method: str, url: str, **kwargs) -> httpx.Response:
        response = await self._client.request(method, url, **kwargs)
        if response.status_code >= 500:
            raise _RetryableStatusError(response)
        return response

    async def _request(self, method: str, url: str, *, operation: str, **kwargs) -> Any:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self._settings.http_max_retries)),
                wait=self._retry_wait,
                retry=retry_if_exception_type((httpx.TransportError, _RetryableStatusError)),
            ):
                with attempt:
                    response = await self._send_once(method, url, **kwargs)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            if isinstance(last, _RetryableStatusError):
                response = last.response
            else:
                logger.error(
                    "Provider request failed",
                    extra={
                        "component": "recall_client",
                        "operation": operation,
                        "context_data": {"url": url, "error": str(last)},
                    },
                )
                raise RecallApiError(f"Provider request failed: {last}") from last

        if response.is_error:
            details = _response_details(response)
            logger.error(
                "Provider returned an error",
                extra={
                    "component": "recall_client",
                    "operation": operation,
                    "context_data": {"url": url, "status_code": response.status_code},
                },
            )
            raise RecallApiError(
                f"Provider returned HTTP {response.status_code}",
                status_code=response.status_code,
                details=details,
            )
        if not response.content:
            return {}
        return response.json()

    def build_bot_config(
        self,
        meeting_url: str,
        bot_name: str,
        transcription_type: str,
        language: str,
        bot_photo: str | None = None,
    ) -> dict:
        if not self._settings.webhook_base_url:
            raise ConfigurationError("webhook_base_url")
        return build_bot_config(
            meeting_url,
            bot_name,
            transcription_type,
            language,
            bot_photo,
            webhook_base_url=self._settings.webhook_base_url,
            model=self._settings.deepgram_model,
        )

    async def create_bot(self, config: dict) -> dict:
        headers = self._auth_headers()
        logger.info(
            "Creating provider bot",
            extra={
                "component": "recall_client",
                "operation": "create_bot",
                "context_data": {
                    "meeting_url": config.get("meeting_url"),
                    "bot_name": config.get("bot_name"),
                },
            },
        )
        return await self._request(
            "POST", self._url("bot"), operation="create_bot", json=config, headers=headers
        )

    async def get_bot(self, bot_id: str) -> dict:
        return await self._request(
            "GET", self._url(f"bot/{bot_id}"), operation="get_bot", headers=self._auth_headers()
        )

    async def send_output_audio(self, bot_id: str, b64_mp3: str) -> dict:
        return await self._request(
            "POST",
            self._url(f"bot/{bot_id}/output_audio/"),
            operation="send_output_audio",
            json={"kind": "mp3", "b64_data": b64_mp3},
            headers=self._auth_headers(),
        )

    async def download(self, url: str) -> Any:
        """Fetch a pre-signed provider download url (no auth header)."""
        return await self._request("GET", url, operation="download")

    async def fetch_transcript(self, bot_id: str) -> tuple[dict, Any]:
        """Return ``(latest recording, transcript)`` for a finished call."""
        bot_data = await self.get_bot(bot_id)
        url = latest_transcript_download_url(bot_data)
        return bot_data["recordings"][-1], await self.download(url)
