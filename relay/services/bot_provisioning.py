"""Create provider bots and register them with the relay."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace

from relay.core.logging import get_logger
from relay.core.settings import Settings
from relay.repositories import bot_repository, template_repository
from relay.services.persistence import SessionFactory
from relay.services.recall_client import JPEG_DATA_URL_PREFIX, RecallApiError, RecallClient
from relay.services.session_router import SessionRouter

logger = get_logger(__name__)


@dataclass(frozen=True)
class BotCreateParams:
    meeting_url: str
    bot_name: str | None = None
    language: str | None = None
    transcription_type: str | None = None
    bot_photo: str | None = None
    bot_photo_url: str | None = None
    template_id: str | None = None
    connection_id: str | None = None


def _photo_for(params: BotCreateParams) -> str | None:
    """Inline jpeg to show in the call; a stored data URL counts, a remote URL does not."""

    if params.bot_photo:
        return params.bot_photo
    if params.bot_photo_url and params.bot_photo_url.startswith(JPEG_DATA_URL_PREFIX):
        return params.bot_photo_url
    return None


class BotProvisioner:
    def __init__(
        self,
        settings: Settings,
        recall: RecallClient,
        router: SessionRouter,
        session_factory: SessionFactory,
    ) -> None:
        self._settings = settings
        self._recall = recall
        self._router = router
        self._session_factory = session_factory

    def _apply_template_sync(self, params: BotCreateParams) -> BotCreateParams:
        if not params.template_id:
            return params
        db = self._session_factory()
        try:
            template = template_repository.get_template(db, params.template_id)
            if template is None:
                logger.warning(
                    "Unknown bot template, using request values",
                    extra={
                        "component": "bot_provisioning",
                        "operation": "apply_template",
                        "context_data": {"template_id": params.template_id},
                    },
                )
                return params
            return replace(
                params,
                bot_name=params.bot_name or template.bot_name,
                transcription_type=params.transcription_type or template.transcription_type,
                language=params.language or template.language,
                bot_photo_url=params.bot_photo_url or template.bot_photo_url,
            )
        finally:
            db.close()

    def _with_defaults(self, params: BotCreateParams) -> BotCreateParams:
        return replace(
            params,
            bot_name=params.bot_name or self._settings.default_bot_name,
            transcription_type=params.transcription_type
            or self._settings.default_transcription_type,
            language=params.language or self._settings.default_language,
        )

    def _save_bot_sync(self, bot_data: dict, params: BotCreateParams) -> None:
        db = self._session_factory()
        try:
            bot_repository.create_bot(
                db,
                recall_bot_id=bot_data["id"],
                meeting_url=params.meeting_url,
                bot_name=params.bot_name,
                transcription_type=params.transcription_type,
                language=params.language,
                bot_photo_url=params.bot_photo_url,
                socket_id=params.connection_id,
                template_id=params.template_id,
            )
        finally:
            db.close()

    async def create_bot(self, params: BotCreateParams) -> dict:
        """Create the bot at the provider and return the provider's bot data.

        Raises:
            RecallApiError: the provider rejected or failed the request
            ConfigurationError: provider credentials or webhook base url missing
        """
        params = await asyncio.to_thread(self._apply_template_sync, params)
        params = self._with_defaults(params)

        config = self._recall.build_bot_config(
            params.meeting_url,
            params.bot_name,
            params.transcription_type,
            params.language,
            _photo_for(params),
        )
        bot_data = await self._recall.create_bot(config)
        bot_id = bot_data.get("id")
        if not bot_id:
            raise RecallApiError("Provider response has no bot id", details=bot_data)

        try:
            await asyncio.to_thread(self._save_bot_sync, bot_data, params)
        except Exception:
            logger.exception(
                "Failed to save bot to database",
                extra={
                    "component": "bot_provisioning",
                    "operation": "create_bot",
                    "item_id": bot_id,
                },
            )

        if params.connection_id:
            self._router.register(
                bot_id,
                params.connection_id,
                meeting_url=params.meeting_url,
                lifecycle_state="created",
            )

        logger.info(
            "Bot created",
            extra={
                "component": "bot_provisioning",
                "operation": "create_bot",
                "item_id": bot_id,
                "context_data": {
                    "transcription_type": params.transcription_type,
                    "language": params.language,
                    "template_id": params.template_id,
                    "connection_id": params.connection_id,
                },
            },
        )
        return bot_data
