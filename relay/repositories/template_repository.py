"""Repository helpers for bot templates."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from relay.models.schema import BotTemplate

_EDITABLE_FIELDS = ("name", "bot_name", "transcription_type", "language", "bot_photo_url")


def list_templates(db: Session) -> list[BotTemplate]:
    return list(db.execute(select(BotTemplate).order_by(BotTemplate.created_at.desc())).scalars())


def get_template(db: Session, template_id: str) -> BotTemplate | None:
    return db.get(BotTemplate, template_id)


def create_template(db: Session, **fields) -> BotTemplate:
    template = BotTemplate(**{key: fields.get(key) for key in _EDITABLE_FIELDS})
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


def update_template(db: Session, template: BotTemplate, **fields) -> BotTemplate:
    for key in _EDITABLE_FIELDS:
        if key in fields:
            setattr(template, key, fields[key])
    db.commit()
    db.refresh(template)
    return template


def delete_template(db: Session, template: BotTemplate) -> None:
    db.delete(template)
    db.commit()
