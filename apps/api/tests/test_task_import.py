"""Tests for bulk task import from JSON rows, CSV, XLSX, and S3 uploads."""

import io
from datetime import datetime, timezone

import pytest
from httpx import AsyncClient
from openpyxl import Workbook
from sqlalchemy.orm import Session

from projecthub.core.errors import NotFoundError, ValidationError
from projecthub.db.enums import Role
from projecthub.db.models import Task
from projecthub.services import import_service, org_service


@pytest.fixture
def project(db: Session, owner, test_org):
    return org_service.create_project(db, test_org.id, owner.user_id, "Migration")


def _url(org, project, suffix: str = "import") -> str:
    return f"/organizations/{org.id}/projects/{project.id}/tasks/{suffix}"


# =============================================================================
# JSON rows
# =============================================================================

@pytest.mark.asyncio
async def test_import_rows_reports_bad_row_and_keeps_the_rest(
    client: AsyncClient, db: Session, owner, test_org, project
):
    rows = [{"title": f"Task {i}", "priority": "high"} for i in range(1, 11)]
    rows[2] = {"title": "", "priority": "high"}

    response = await client.post(
        _url(test_org, project), json={"tasks": rows}, headers=owner.headers
    )

    assert response.status_code == 200
    results = response.json()["results"]
    assert results["total"] == 10
    assert results["success"] == 9
    assert results["failed"] == 1
    assert results["errors"] == [{"row": 3, "error": "Title is required", "title": ""}]
    assert db.query(Task).filter(Task.project_id == project.id).count() == 9
    assert {t.priority for t in db.query(Task).all()} == {"HIGH"}


@pytest.mark.asyncio
async def test_import_rows_maps_aliases_and_assignees(
    client: AsyncClient, db: Session, owner, test_org, project, add_member
):
    assignee = add_member(test_org, Role.MEMBER)
    rows = [
        {
            "title": "Migrate billing",
            "status": "in progress",
            "assignedToId": str(assignee.user_id),
            "dueDate": "2024-07-01",
            "tags": "billing, infra",
            "estimatedHours": "6h",
        },
        {"title": "Bad status", "status": "sleeping"},
        {"title": "Stranger", "assignedToId": "00000000-0000-0000-0000-000000000001"},
    ]

    response = await client.post(_url(test_org, project), json={"tasks": rows}, headers=owner.headers)

    results = response.json()["results"]
    assert results["success"] == 1
    assert [e["row"] for e in results["errors"]] == [2, 3]
    assert results["errors"][0]["error"] == "Invalid status 'sleeping'"
    assert results["errors"][1]["error"] == "Assignee must be a member of the organization"

    task = db.query(Task).filter(Task.title == "Migrate billing").one()
    assert task.status == "IN_PROGRESS"
    assert task.assigned_to_id == assignee.user_id
    assert task.tags == ["billing", "infra"]
    assert task.estimated_hours == 6.0
    assert task.due_date == datetime(2024, 7, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_import_rows_requires_non_empty_list(client: AsyncClient, owner, test_org, project):
    response = await client.post(_url(test_org, project), json={"tasks": []}, headers=owner.headers)

    assert response.status_code == 400
    assert response.json() == {"error": "tasks must be a non-empty array"}


@pytest.mark.asyncio
async def test_viewer_cannot_import(client: AsyncClient, test_org, project, add_member):
    viewer = add_member(test_org, Role.VIEWER)

    response = await client.post(
        _url(test_org, project), json={"tasks": [{"title": "x"}]}, headers=viewer.headers
    )

    assert response.status_code == 403


# =============================================================================
# Files
# =============================================================================

@pytest.mark.asyncio
async def test_import_csv_file(client: AsyncClient, db: Session, owner, test_org, project):
    content = (
        "Task Name,Status,Priority,Owner,Due Date,Tags\n"
        f"Write handbook,Done,Critical,{owner.email},06/15/2024,docs\n"
        "Bad date,Open,Low,,not-a-date,\n"
        ",,,,,\n"
        "Plain,,,,,\n"
    ).encode("utf-8")

    response = await client.post(
        _url(test_org, project, "import-file"),
        files={"file": ("tasks.csv", content, "text/csv")},
        headers=owner.headers,
    )

    assert response.status_code == 200
    results = response.json()["results"]
    assert results["total"] == 3
    assert results["success"] == 2
    assert results["errors"] == [{"row": 3, "error": "Invalid due date: not-a-date", "title": "Bad date"}]

    handbook = db.query(Task).filter(Task.title == "Write handbook").one()
    assert handbook.status == "DONE"
    assert handbook.completed_at is not None
    assert handbook.priority == "URGENT"
    assert handbook.assigned_to_id == owner.user_id
    assert handbook.due_date == datetime(2024, 6, 15, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_import_csv_file_in_legacy_encoding(client: AsyncClient, db: Session, owner, test_org, project):
    content = "Task Name,Description\nCafé launch,résumé\n".encode("latin-1")

    response = await client.post(
        _url(test_org, project, "import-file"),
        files={"file": ("tasks.csv", content, "text/csv")},
        headers=owner.headers,
    )

    assert response.status_code == 200
    assert response.json()["results"]["success"] == 1
    assert db.query(Task).filter(Task.project_id == project.id).count() == 1


def test_detect_encoding_order(monkeypatch):
    class NoMatch:
        def best(self):
            return None

    assert import_service.detect_encoding("Title\nx\n".encode("utf-8-sig")) == "utf-8-sig"
    assert import_service.detect_encoding("Title\nx\n".encode("utf-16")) in ("utf-16-le", "utf-16-be")
    assert import_service.detect_encoding("Title\nCafé\n".encode("utf-8")) == "utf-8"

    monkeypatch.setattr(import_service, "from_bytes", lambda content: NoMatch())
    assert import_service.detect_encoding(b"Title\nCaf\xe9\n") == "latin-1"
    headers, rows = import_service.parse_csv_file(b"Title\nCaf\xe9\n")
    assert headers == ["Title"]
    assert rows == [["Café"]]


def test_parse_csv_file_strips_utf16_bom():
    headers, rows = import_service.parse_csv_file("Title,Status\nShip,Done\n".encode("utf-16"))

    assert headers == ["Title", "Status"]
    assert rows == [["Ship", "Done"]]


def test_parse_csv_file_rejects_undecodable_bytes(monkeypatch):
    monkeypatch.setattr(import_service, "detect_encoding", lambda content: "utf-8")

    with pytest.raises(ValidationError, match="Could not decode CSV file"):
        import_service.parse_csv_file(b"Title\n\xff\xfe\xfa\n")


@pytest.mark.asyncio
async def test_import_xlsx_file(client: AsyncClient, db: Session, owner, test_org, project):
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["Title", "Priority", "Duration", "Owner"])
    sheet.append(["Design review", "High", 3, None])
    sheet.append(["Unknown owner", "Low", None, "Nobody Here"])
    buffer = io.BytesIO()
    workbook.save(buffer)

    response = await client.post(
        _url(test_org, project, "import-file"),
        files={
            "file": (
                "tasks.xlsx",
                buffer.getvalue(),
                "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            )
        },
        headers=owner.headers,
    )

    assert response.status_code == 200
    results = response.json()["results"]
    assert results["success"] == 1
    assert results["errors"] == [{"row": 3, "error": "Unknown owner: Nobody Here", "title": "Unknown owner"}]
    task = db.query(Task).filter(Task.title == "Design review").one()
    assert task.estimated_hours == 3.0
    assert task.priority == "HIGH"


@pytest.mark.asyncio
async def test_import_rejects_unsupported_file_type(client: AsyncClient, owner, test_org, project):
    response = await client.post(
        _url(test_org, project, "import-file"),
        files={"file": ("tasks.txt", b"hello", "text/plain")},
        headers=owner.headers,
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Unsupported file type. Use one of: .csv, .xlsx"}


def test_file_without_title_column_is_rejected():
    with pytest.raises(ValidationError):
        import_service.rows_from_file("tasks.csv", b"Status,Priority\nDone,High\n")


# =============================================================================
# S3 uploads
# =============================================================================

class FakeS3:
    def __init__(self, objects: dict[str, bytes]):
        self.objects = objects
        self.deleted: list[str] = []

    def get_object(self, Bucket: str, Key: str):
        from botocore.exceptions import ClientError

        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def delete_object(self, Bucket: str, Key: str):
        self.deleted.append(Key)
        self.objects.pop(Key, None)


def test_import_from_s3_deletes_upload(db: Session, owner, test_org, project, monkeypatch):
    monkeypatch.setattr(import_service.settings, "S3_BUCKET", "uploads")
    s3 = FakeS3({"imports/tasks.csv": b"Title\nFrom bucket\n"})

    result = import_service.import_task_file_from_s3(
        db, test_org.id, project.id, owner.user_id, "imports/tasks.csv", s3_client=s3
    )

    assert result.success == 1
    assert s3.deleted == ["imports/tasks.csv"]
    assert db.query(Task).filter(Task.title == "From bucket").count() == 1


def test_import_from_s3_missing_object(db: Session, owner, test_org, project, monkeypatch):
    monkeypatch.setattr(import_service.settings, "S3_BUCKET", "uploads")

    with pytest.raises(NotFoundError):
        import_service.import_task_file_from_s3(
            db, test_org.id, project.id, owner.user_id, "imports/missing.csv", s3_client=FakeS3({})
        )
