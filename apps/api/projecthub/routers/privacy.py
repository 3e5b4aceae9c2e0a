"""Personal data export and account erasure."""

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from projecthub.core.deps import get_current_identity, get_db, get_email_sender
from projecthub.schemas.auth import Identity
from projecthub.services import user_data_service
from projecthub.services.email_service import EmailSender

router = APIRouter(prefix="/users", tags=["privacy"])


class DeleteRequest(BaseModel):
    confirmation: str | None = None


@router.post("/{user_id}/export")
def export_user_data(
    user_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    sender: EmailSender = Depends(get_email_sender),
):
    result = user_data_service.export_user_data(db, identity.user_id, user_id, sender)
    return {
        "success": True,
        "message": "Data export emailed" if result["emailed"] else "Data export generated",
        **result,
    }


@router.post("/{user_id}/delete")
def delete_user_data(
    user_id: UUID,
    data: DeleteRequest,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    sender: EmailSender = Depends(get_email_sender),
):
    summary = user_data_service.delete_user_data(
        db, identity.user_id, user_id, data.confirmation, sender
    )
    return {"success": True, "message": "User data deleted", "deleted": summary}
