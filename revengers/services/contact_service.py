"""
Contact form submissions: anonymous create, admin-only listing.
"""

import logging
from typing import List, Optional

from revengers.config import settings
from revengers.database.gateway import StorageGateway
from revengers.models.schemas import ContactCreate, ContactResponse

logger = logging.getLogger(__name__)


async def create_submission(gateway: StorageGateway, payload: ContactCreate) -> int:
    """
    Store a validated contact submission.

    Returns:
        The new submission id
    """
    result = await gateway.execute(
        "INSERT INTO contact_submissions (name, email, whatsapp) VALUES (:name, :email, :whatsapp)",
        {"name": payload.name, "email": payload.email, "whatsapp": payload.whatsapp},
    )
    logger.info(f"Contact submission {result.inserted_id} received")
    return result.inserted_id


async def list_submissions(gateway: StorageGateway, limit: Optional[int] = None) -> List[ContactResponse]:
    """Most recent submissions first; same-second submissions by id ascending."""
    rows = await gateway.query(
        "SELECT name, email, whatsapp FROM contact_submissions "
        "ORDER BY date_trunc('second', submission_date) DESC, id ASC LIMIT :limit",
        {"limit": settings.list_limit if limit is None else limit},
    )
    return [ContactResponse.model_validate(row) for row in rows]
