"""Contact form route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, Request

from revengers.api.auth_dependencies import client_ip, get_gateway, require_admin
from revengers.database.gateway import StorageGateway
from revengers.models.schemas import ContactCreate, ContactResponse, CreatedResponse
from revengers.services import contact_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/contact", status_code=201, response_model=CreatedResponse)
async def submit_contact(
    payload: ContactCreate,
    request: Request,
    gateway: StorageGateway = Depends(get_gateway),
):
    """Public contact form. No authentication."""
    submission_id = await contact_service.create_submission(gateway, payload)
    logger.info(f"Contact submission {submission_id} from {client_ip(request)}")
    return {"id": submission_id, "message": "Contact submission received successfully"}


@router.get(
    "/api/registered-users",
    response_model=List[ContactResponse],
    dependencies=[Depends(require_admin)],
)
async def list_registered_users(gateway: StorageGateway = Depends(get_gateway)):
    """Most recent contact submissions (admin only)."""
    return await contact_service.list_submissions(gateway)
