"""Project task endpoints, including bulk import."""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session

from projecthub.core.deps import get_db, get_org_member, require_roles
from projecthub.core.errors import ValidationError
from projecthub.db.enums import ROLES_CAN_EDIT_TASKS
from projecthub.schemas.auth import MemberContext
from projecthub.schemas.task import (
    TaskCreate, TaskImportRequest, TaskImportS3Request, TaskRead, TaskStatusUpdate,
)
from projecthub.services import import_service, org_service, task_service

router = APIRouter(prefix="/organizations/{org_id}", tags=["tasks"])

MAX_IMPORT_BYTES = 10 * 1024 * 1024


def _dump(task) -> dict:
    return TaskRead.model_validate(task).model_dump(mode="json")


# =============================================================================
# Tasks
# =============================================================================

@router.post("/projects/{project_id}/tasks", status_code=201)
def create_task(
    org_id: UUID,
    project_id: UUID,
    data: TaskCreate,
    member: MemberContext = Depends(require_roles(ROLES_CAN_EDIT_TASKS)),
    db: Session = Depends(get_db),
):
    org_service.get_project_or_404(db, org_id, project_id)
    fields = data.model_dump(exclude={"title", "recurrence"})
    fields["status"] = data.status.value
    fields["priority"] = data.priority.value
    task = task_service.create_task(
        db,
        org_id,
        project_id,
        member.user_id,
        data.title,
        recurrence=data.recurrence.model_dump() if data.recurrence else None,
        **fields,
    )
    return {"success": True, "task": _dump(task)}


@router.get("/projects/{project_id}/tasks")
def list_tasks(
    org_id: UUID,
    project_id: UUID,
    status: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    member: MemberContext = Depends(get_org_member),
    db: Session = Depends(get_db),
):
    org_service.get_project_or_404(db, org_id, project_id)
    tasks = task_service.list_tasks(db, org_id, project_id, status, limit, offset)
    return {"success": True, "tasks": [_dump(t) for t in tasks]}


@router.patch("/tasks/{task_id}/status")
def update_task_status(
    org_id: UUID,
    task_id: UUID,
    data: TaskStatusUpdate,
    member: MemberContext = Depends(require_roles(ROLES_CAN_EDIT_TASKS)),
    db: Session = Depends(get_db),
):
    task = task_service.update_status(db, org_id, task_id, data.status.value)
    return {"success": True, "task": _dump(task)}


# =============================================================================
# Bulk import
# =============================================================================

@router.post("/projects/{project_id}/tasks/import")
def import_tasks(
    org_id: UUID,
    project_id: UUID,
    data: TaskImportRequest,
    member: MemberContext = Depends(require_roles(ROLES_CAN_EDIT_TASKS)),
    db: Session = Depends(get_db),
):
    """Import JSON rows; each row succeeds or fails on its own."""
    org_service.get_project_or_404(db, org_id, project_id)
    result = import_service.import_task_rows(db, org_id, project_id, member.user_id, data.tasks)
    return {"success": True, "results": result.to_dict()}


@router.post("/projects/{project_id}/tasks/import-file")
async def import_tasks_file(
    org_id: UUID,
    project_id: UUID,
    file: UploadFile = File(...),
    member: MemberContext = Depends(require_roles(ROLES_CAN_EDIT_TASKS)),
    db: Session = Depends(get_db),
):
    """Import a .csv or .xlsx spreadsheet export."""
    org_service.get_project_or_404(db, org_id, project_id)
    content = await file.read()
    if len(content) > MAX_IMPORT_BYTES:
        raise ValidationError("File too large (max 10MB)")
    result = import_service.import_task_file(
        db, org_id, project_id, member.user_id, file.filename or "", content
    )
    return {"success": True, "results": result.to_dict()}


@router.post("/projects/{project_id}/tasks/import-s3")
def import_tasks_from_s3(
    org_id: UUID,
    project_id: UUID,
    data: TaskImportS3Request,
    member: MemberContext = Depends(require_roles(ROLES_CAN_EDIT_TASKS)),
    db: Session = Depends(get_db),
):
    org_service.get_project_or_404(db, org_id, project_id)
    result = import_service.import_task_file_from_s3(
        db, org_id, project_id, member.user_id, data.file_key
    )
    return {"success": True, "results": result.to_dict()}
