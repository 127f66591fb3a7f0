"""
Roster and trophy routes.

Players, managers and trophies expose the same five endpoints, so one router
factory builds all three from their EntityKind.
"""

import logging
from typing import List, Optional, Tuple

from fastapi import APIRouter, Body, Depends, Path, Request
from pydantic import BaseModel, ValidationError
from starlette.datastructures import UploadFile

from revengers.api.auth_dependencies import get_gateway, require_admin
from revengers.api.error_handlers import validation_failed_from
from revengers.database.gateway import StorageGateway
from revengers.errors import ValidationFailed
from revengers.models.schemas import CreatedResponse, ImageUpdatedResponse, MessageResponse
from revengers.services.entity_service import (
    MANAGER,
    PLAYER,
    TROPHY,
    EntityKind,
    EntityService,
    ImageUpload,
)

logger = logging.getLogger(__name__)

MAX_FORM_FIELDS = 20


async def read_image(value) -> Optional[ImageUpload]:
    """Turn a multipart ``image`` part into an ImageUpload, if one was sent."""
    if not isinstance(value, UploadFile):
        return None
    data = await value.read()
    if not data and not value.filename:
        return None
    return ImageUpload(data=data, content_type=value.content_type, filename=value.filename)


async def parse_entity_form(request: Request, schema) -> Tuple[BaseModel, Optional[ImageUpload]]:
    """
    Read a multipart form into (validated fields, optional image).

    Raises:
        ValidationFailed: Field validation failed
    """
    form = await request.form(max_files=1, max_fields=MAX_FORM_FIELDS)
    fields = {key: value for key, value in form.items() if not isinstance(value, UploadFile)}
    try:
        payload = schema.model_validate(fields)
    except ValidationError as e:
        raise validation_failed_from(e)
    return payload, await read_image(form.get("image"))


def build_entity_router(kind: EntityKind, prefix: str) -> APIRouter:
    router = APIRouter()
    label = kind.label

    def get_service(gateway: StorageGateway = Depends(get_gateway)) -> EntityService:
        return EntityService(kind, gateway)

    @router.get(prefix, response_model=List[kind.response_schema], name=f"list_{kind.table}")
    async def list_entities(service: EntityService = Depends(get_service)):
        return await service.list()

    @router.post(
        prefix,
        status_code=201,
        response_model=CreatedResponse,
        dependencies=[Depends(require_admin)],
        name=f"create_{kind.name}",
    )
    async def create_entity(request: Request, service: EntityService = Depends(get_service)):
        payload, upload = await parse_entity_form(request, kind.create_schema)
        entity_id = await service.create(payload, upload)
        return {"id": entity_id, "message": f"{label} added successfully"}

    @router.put(
        f"{prefix}/{{entity_id}}/image",
        response_model=ImageUpdatedResponse,
        dependencies=[Depends(require_admin)],
        name=f"update_{kind.name}_image",
    )
    async def update_entity_image(
        request: Request,
        entity_id: int = Path(..., ge=1),
        service: EntityService = Depends(get_service),
    ):
        form = await request.form(max_files=1, max_fields=MAX_FORM_FIELDS)
        upload = await read_image(form.get("image"))
        if upload is None:
            raise ValidationFailed.for_field("image", "No image file provided")
        image_url = await service.update_image(entity_id, upload)
        return {"message": f"{label} image updated successfully", "imageUrl": image_url}

    @router.patch(
        f"{prefix}/{{entity_id}}",
        response_model=MessageResponse,
        dependencies=[Depends(require_admin)],
        name=f"update_{kind.name}",
    )
    async def update_entity(
        entity_id: int = Path(..., ge=1),
        body: dict = Body(...),
        service: EntityService = Depends(get_service),
    ):
        try:
            payload = kind.update_schema.model_validate(body)
        except ValidationError as e:
            raise validation_failed_from(e)
        await service.update_fields(entity_id, payload)
        return {"message": f"{label} updated successfully"}

    @router.delete(
        f"{prefix}/{{entity_id}}",
        response_model=MessageResponse,
        dependencies=[Depends(require_admin)],
        name=f"delete_{kind.name}",
    )
    async def delete_entity(
        entity_id: int = Path(..., ge=1),
        service: EntityService = Depends(get_service),
    ):
        await service.delete(entity_id)
        return {"message": f"{label} deleted successfully"}

    return router


players_router = build_entity_router(PLAYER, "/api/players")
managers_router = build_entity_router(MANAGER, "/api/managers")
trophies_router = build_entity_router(TROPHY, "/api/trophies")
