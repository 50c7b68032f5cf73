"""CRUD endpoints for bot templates."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from relay.core.db import get_db_session
from relay.models.schema import BotTemplate
from relay.repositories import template_repository
from relay.routers.api_models import TemplateCreateRequest, TemplateResponse, TemplateUpdateRequest

router = APIRouter(prefix="/api/templates", tags=["templates"])


def _require_template(db: Session, template_id: str) -> BotTemplate:
    template = template_repository.get_template(db, template_id)
    if template is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    return template


@router.get("", response_model=list[TemplateResponse])
async def list_templates(db: Annotated[Session, Depends(get_db_session)]) -> list[TemplateResponse]:
    return [TemplateResponse.model_validate(t) for t in template_repository.list_templates(db)]


@router.post("", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    body: TemplateCreateRequest,
    db: Annotated[Session, Depends(get_db_session)],
) -> TemplateResponse:
    template = template_repository.create_template(db, **body.model_dump())
    return TemplateResponse.model_validate(template)


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: str,
    db: Annotated[Session, Depends(get_db_session)],
) -> TemplateResponse:
    return TemplateResponse.model_validate(_require_template(db, template_id))


@router.put("/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: str,
    body: TemplateUpdateRequest,
    db: Annotated[Session, Depends(get_db_session)],
) -> TemplateResponse:
    template = _require_template(db, template_id)
    changes = {
        key: value
        for key, value in body.model_dump(exclude_unset=True).items()
        if value is not None or key == "bot_photo_url"
    }
    updated = template_repository.update_template(db, template, **changes)
    return TemplateResponse.model_validate(updated)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: str,
    db: Annotated[Session, Depends(get_db_session)],
) -> Response:
    template_repository.delete_template(db, _require_template(db, template_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
