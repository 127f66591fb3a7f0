"""
Entity service for players, managers and trophies.

All three share one template: list newest first, create with an optional
image, replace the image, patch structured fields, delete. Whenever a row
write fails after an upload, the freshly uploaded object is deleted before the
error propagates. After a successful replace or delete the previous object is
removed best-effort; an orphaned object is acceptable, a row pointing at a
missing object is not.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple, Type

from pydantic import BaseModel

from revengers.config import settings
from revengers.database.gateway import StorageGateway
from revengers.errors import NotFound, ValidationFailed
from revengers.models.schemas import (
    ManagerCreate,
    ManagerResponse,
    ManagerUpdate,
    PlayerCreate,
    PlayerResponse,
    PlayerUpdate,
    TrophyCreate,
    TrophyResponse,
    TrophyUpdate,
)
from revengers.services import image_service, s3_service
from revengers.services.validation_service import validate_file_upload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityKind:
    """Static description of one entity table."""

    name: str
    label: str
    table: str
    columns: Tuple[str, ...]
    order_column: str
    folder: str
    create_schema: Type[BaseModel]
    update_schema: Type[BaseModel]
    response_schema: Type[BaseModel]

    @property
    def select_columns(self) -> str:
        return ", ".join(("id",) + self.columns + ("image_url", self.order_column))


PLAYER = EntityKind(
    name="player",
    label="Player",
    table="players",
    columns=("name", "jersey_number", "stars"),
    order_column="joined_date",
    folder="players",
    create_schema=PlayerCreate,
    update_schema=PlayerUpdate,
    response_schema=PlayerResponse,
)

MANAGER = EntityKind(
    name="manager",
    label="Manager",
    table="managers",
    columns=("name", "role"),
    order_column="joined_date",
    folder="managers",
    create_schema=ManagerCreate,
    update_schema=ManagerUpdate,
    response_schema=ManagerResponse,
)

TROPHY = EntityKind(
    name="trophy",
    label="Trophy",
    table="trophies",
    columns=("name", "year"),
    order_column="created_at",
    folder="trophies",
    create_schema=TrophyCreate,
    update_schema=TrophyUpdate,
    response_schema=TrophyResponse,
)


@dataclass
class ImageUpload:
    data: bytes
    content_type: Optional[str]
    filename: Optional[str]


class EntityService:
    """CRUD plus image pipeline for one EntityKind."""

    def __init__(self, kind: EntityKind, gateway: StorageGateway):
        self.kind = kind
        self.gateway = gateway

    async def list(self, limit: Optional[int] = None) -> List[BaseModel]:
        """
        Newest first by the second, id ascending among rows created in the
        same second, capped at LIST_LIMIT (20).
        """
        limit = settings.list_limit if limit is None else limit
        rows = await self.gateway.query(
            f"SELECT {self.kind.select_columns} FROM {self.kind.table} "
            f"ORDER BY date_trunc('second', {self.kind.order_column}) DESC, id ASC LIMIT :limit",
            {"limit": limit},
        )
        return [self.kind.response_schema.model_validate(row) for row in rows]

    async def publish_image(self, upload: ImageUpload) -> str:
        """
        Validate, transform and upload an image.

        Returns:
            URL of the stored rendition

        Raises:
            ValidationFailed: The upload fails a file rule (field "image")
            ImageProcessingError: The bytes cannot be decoded or encoded
            StorageError: The object store refused or timed out
        """
        result = validate_file_upload(upload.data, upload.content_type, upload.filename)
        if not result.valid:
            raise ValidationFailed(details=[{"field": "image", "message": msg} for msg in result.errors])

        processed = await image_service.process_image_async(upload.data, self.kind.name)
        key = s3_service.build_object_key(self.kind.folder, result.sanitized_filename)
        return await s3_service.put(key, processed, "image/webp")

    async def create(self, payload: BaseModel, upload: Optional[ImageUpload] = None) -> int:
        """
        Insert a row, uploading its image first when one is supplied.

        Returns:
            The new row id
        """
        values = payload.model_dump(include=set(self.kind.columns))
        image_url = await self.publish_image(upload) if upload is not None else None

        columns = self.kind.columns + ("image_url",)
        placeholders = ", ".join(f":{col}" for col in columns)
        try:
            result = await self.gateway.execute(
                f"INSERT INTO {self.kind.table} ({', '.join(columns)}) VALUES ({placeholders})",
                {**values, "image_url": image_url},
            )
        except BaseException:
            # Row write failed or the request was cancelled; the object is unreferenced
            if image_url:
                await s3_service.delete_quietly(image_url)
            raise

        logger.info(f"Created {self.kind.name} {result.inserted_id}")
        return result.inserted_id

    async def _current_image(self, entity_id: int) -> Optional[str]:
        row = await self.gateway.query_one(
            f"SELECT image_url FROM {self.kind.table} WHERE id = :id", {"id": entity_id}
        )
        if row is None:
            raise NotFound(f"{self.kind.label} not found")
        return row["image_url"]

    async def update_image(self, entity_id: int, upload: ImageUpload) -> str:
        """
        Replace a row's image.

        Returns:
            The new image URL
        """
        old_url = await self._current_image(entity_id)
        new_url = await self.publish_image(upload)

        try:
            result = await self.gateway.execute(
                f"UPDATE {self.kind.table} SET image_url = :image_url WHERE id = :id",
                {"image_url": new_url, "id": entity_id},
            )
        except BaseException:
            await s3_service.delete_quietly(new_url)
            raise

        if result.affected == 0:
            # Row deleted between the read and the update
            await s3_service.delete_quietly(new_url)
            raise NotFound(f"{self.kind.label} not found")

        if old_url:
            await s3_service.delete_quietly(old_url)
        logger.info(f"Replaced image for {self.kind.name} {entity_id}")
        return new_url

    async def update_fields(self, entity_id: int, payload: BaseModel) -> None:
        """Apply a validated partial update to the structured columns."""
        values = payload.model_dump(include=set(self.kind.columns), exclude_none=True)
        if not values:
            raise ValidationFailed("At least one field must be provided")

        assignments = ", ".join(f"{col} = :{col}" for col in self.kind.columns if col in values)
        result = await self.gateway.execute(
            f"UPDATE {self.kind.table} SET {assignments} WHERE id = :id",
            {**values, "id": entity_id},
        )
        if result.affected == 0:
            raise NotFound(f"{self.kind.label} not found")
        logger.info(f"Updated {self.kind.name} {entity_id}: {sorted(values)}")

    async def delete(self, entity_id: int) -> None:
        """Delete the row, then its image (best-effort)."""
        image_url = await self._current_image(entity_id)
        result = await self.gateway.execute(
            f"DELETE FROM {self.kind.table} WHERE id = :id", {"id": entity_id}
        )
        if result.affected == 0:
            raise NotFound(f"{self.kind.label} not found")

        if image_url:
            await s3_service.delete_quietly(image_url)
        logger.info(f"Deleted {self.kind.name} {entity_id}")
