"""Bulk task import from JSON rows, CSV, or XLSX spreadsheets.

Every row is validated and committed on its own: a bad row is reported in
the summary and leaves no partial task behind, while the remaining rows
are still imported.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any
from uuid import UUID

from charset_normalizer import from_bytes
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from projecthub.core.config import settings
from projecthub.core.errors import AppError, NotFoundError, ValidationError
from projecthub.db.models import OrganizationMember, User
from projecthub.services import task_service

logger = logging.getLogger(__name__)


# =============================================================================
# Column Mapping
# =============================================================================

# Spreadsheet headers (normalized) -> task fields
COLUMN_MAPPING = {
    "task_name": "title",
    "title": "title",
    "name": "title",
    "description": "description",
    "custom_status": "status",
    "status": "status",
    "priority": "priority",
    "tags": "tags",
    "owner": "owner",
    "assignee": "owner",
    "due_date": "due_date",
    "start_date": "start_date",
    "duration": "estimated_hours",
    "estimated_hours": "estimated_hours",
}

# JSON row keys (camelCase from the web client) -> task fields
JSON_FIELD_ALIASES = {
    "title": "title",
    "description": "description",
    "status": "status",
    "priority": "priority",
    "tags": "tags",
    "assignedToId": "assigned_to_id",
    "assigned_to_id": "assigned_to_id",
    "owner": "owner",
    "dueDate": "due_date",
    "due_date": "due_date",
    "startDate": "start_date",
    "start_date": "start_date",
    "estimatedHours": "estimated_hours",
    "estimated_hours": "estimated_hours",
}

STATUS_ALIASES = {
    "to do": "TODO",
    "todo": "TODO",
    "open": "TODO",
    "in progress": "IN_PROGRESS",
    "inprogress": "IN_PROGRESS",
    "in_progress": "IN_PROGRESS",
    "in review": "IN_REVIEW",
    "review": "IN_REVIEW",
    "in_review": "IN_REVIEW",
    "done": "DONE",
    "completed": "DONE",
    "complete": "DONE",
    "blocked": "BLOCKED",
}

PRIORITY_ALIASES = {
    "low": "LOW",
    "medium": "MEDIUM",
    "normal": "MEDIUM",
    "high": "HIGH",
    "urgent": "URGENT",
    "critical": "URGENT",
}

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d.%m.%Y", "%Y/%m/%d")
SUPPORTED_EXTENSIONS = (".csv", ".xlsx")


def normalize_column_name(col: Any) -> str:
    """Normalize column name for matching."""
    return str(col or "").lower().strip().replace(" ", "_").replace("-", "_")


def map_columns(headers: list[Any]) -> dict[int, str]:
    """Map column indices to task fields; unknown columns are ignored."""
    mapping = {}
    for i, header in enumerate(headers):
        normalized = normalize_column_name(header)
        if normalized in COLUMN_MAPPING:
            mapping[i] = COLUMN_MAPPING[normalized]
    return mapping


# =============================================================================
# Value parsing
# =============================================================================

def parse_status(value: Any) -> str | None:
    if value in (None, ""):
        return None
    text = str(value).strip()
    mapped = STATUS_ALIASES.get(text.lower())
    if mapped:
        return mapped
    return task_service.coerce_status(text)


def parse_priority(value: Any) -> str | None:
    if value in (None, ""):
        return None
    text = str(value).strip()
    return PRIORITY_ALIASES.get(text.lower()) or task_service.coerce_priority(text)


def parse_tags(value: Any) -> list[str]:
    if value in (None, ""):
        return []
    if isinstance(value, (list, tuple)):
        return [str(t).strip() for t in value if str(t).strip()]
    return [t.strip() for t in str(value).split(",") if t.strip()]


def parse_date(value: Any, field_name: str) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        text = str(value).strip()
        parsed = None
        try:
            parsed = datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
        except ValueError:
            for fmt in DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            raise ValidationError(f"Invalid {field_name.replace('_', ' ')}: {text}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_hours(value: Any) -> float | None:
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower().rstrip("h").strip()
    try:
        return float(text)
    except ValueError:
        raise ValidationError(f"Invalid estimated hours: {value}")


# =============================================================================
# File Parsing
# =============================================================================

def detect_encoding(content: bytes) -> str:
    """
    Pick an encoding for uploaded CSV bytes.

    Order: BOM, strict UTF-8, charset_normalizer's best guess, then latin-1
    (accepts any byte sequence).
    """
    if content.startswith(b"\xef\xbb\xbf"):
        return "utf-8-sig"
    if content.startswith(b"\xff\xfe"):
        return "utf-16-le"
    if content.startswith(b"\xfe\xff"):
        return "utf-16-be"

    try:
        content.decode("utf-8")
        return "utf-8"
    except UnicodeDecodeError:
        pass

    best = from_bytes(content).best()
    if best:
        return best.encoding
    return "latin-1"


def parse_csv_file(file_content: bytes | str) -> tuple[list[str], list[list[str]]]:
    """
    Parse CSV content into headers and rows.

    Returns:
        (headers, rows)
    """
    if isinstance(file_content, bytes):
        encoding = detect_encoding(file_content)
        try:
            file_content = file_content.decode(encoding)
        except (UnicodeDecodeError, LookupError) as exc:
            raise ValidationError(f"Could not decode CSV file ({encoding})") from exc
        # utf-16 codecs keep the BOM as U+FEFF
        file_content = file_content.lstrip("\ufeff")

    rows = list(csv.reader(io.StringIO(file_content)))
    if not rows:
        return [], []
    return rows[0], rows[1:]


def parse_xlsx_file(file_content: bytes) -> tuple[list[Any], list[list[Any]]]:
    """Read the first worksheet of an .xlsx workbook (cached values, not formulas)."""
    from openpyxl import load_workbook

    try:
        workbook = load_workbook(io.BytesIO(file_content), read_only=True, data_only=True)
    except Exception as exc:
        raise ValidationError("Could not read spreadsheet") from exc
    try:
        sheet = workbook.worksheets[0]
        rows = [list(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()

    if not rows:
        return [], []
    return rows[0], rows[1:]


def rows_from_file(filename: str, content: bytes) -> list[tuple[int, dict[str, Any]]]:
    """Return ``(spreadsheet_row_number, {field: value})`` for non-empty rows."""
    lowered = (filename or "").lower()
    if lowered.endswith(".csv"):
        headers, rows = parse_csv_file(content)
    elif lowered.endswith(".xlsx"):
        headers, rows = parse_xlsx_file(content)
    else:
        raise ValidationError(
            f"Unsupported file type. Use one of: {', '.join(SUPPORTED_EXTENSIONS)}"
        )

    column_map = map_columns(headers)
    if "title" not in column_map.values():
        raise ValidationError("File must include a 'Task Name' or 'Title' column")

    parsed: list[tuple[int, dict[str, Any]]] = []
    for row_num, row in enumerate(rows, start=2):
        record: dict[str, Any] = {}
        for idx, field_name in column_map.items():
            if idx < len(row):
                value = row[idx]
                if isinstance(value, str):
                    value = value.strip()
                if value not in (None, ""):
                    record[field_name] = value
        if record:
            parsed.append((row_num, record))
    return parsed


# =============================================================================
# Import Execution
# =============================================================================

@dataclass
class ImportResult:
    total: int = 0
    success: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    created: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "errors": self.errors,
            "created": self.created,
        }


class OwnerResolver:
    """Match an 'Owner' cell (full name or email) to an organization member."""

    def __init__(self, db: Session, org_id: UUID):
        members = (
            db.query(User)
            .join(OrganizationMember, OrganizationMember.user_id == User.id)
            .filter(OrganizationMember.organization_id == org_id)
            .all()
        )
        self._member_ids = {user.id for user in members}
        self._lookup: dict[str, UUID] = {}
        for user in members:
            self._lookup[user.email.lower()] = user.id
            full_name = " ".join(p for p in (user.first_name, user.last_name) if p).lower()
            if full_name:
                self._lookup.setdefault(full_name, user.id)

    def resolve(self, owner: Any) -> UUID | None:
        if owner in (None, ""):
            return None
        user_id = self._lookup.get(str(owner).strip().lower())
        if not user_id:
            raise ValidationError(f"Unknown owner: {owner}")
        return user_id

    def check_member(self, user_id: Any) -> UUID | None:
        if user_id in (None, ""):
            return None
        try:
            parsed = user_id if isinstance(user_id, UUID) else UUID(str(user_id))
        except ValueError:
            raise ValidationError(f"Invalid assignee id: {user_id}")
        if parsed not in self._member_ids:
            raise ValidationError("Assignee must be a member of the organization")
        return parsed


def _build_fields(record: dict[str, Any], owners: OwnerResolver) -> dict[str, Any]:
    assigned_to_id = owners.check_member(record.get("assigned_to_id"))
    if assigned_to_id is None:
        assigned_to_id = owners.resolve(record.get("owner"))
    title = record.get("title")
    return {
        "title": str(title) if title is not None else None,
        "description": record.get("description"),
        "status": parse_status(record.get("status")),
        "priority": parse_priority(record.get("priority")),
        "assigned_to_id": assigned_to_id,
        "tags": parse_tags(record.get("tags")),
        "start_date": parse_date(record.get("start_date"), "start_date"),
        "due_date": parse_date(record.get("due_date"), "due_date"),
        "estimated_hours": parse_hours(record.get("estimated_hours")),
    }


def import_records(
    db: Session,
    org_id: UUID,
    project_id: UUID,
    created_by: UUID,
    records: list[tuple[int, dict[str, Any]]],
) -> ImportResult:
    """Validate and commit each record independently."""
    result = ImportResult(total=len(records))
    owners = OwnerResolver(db, org_id)

    for row_num, record in records:
        title = record.get("title")
        try:
            task = task_service.build_task(
                org_id=org_id,
                project_id=project_id,
                created_by=created_by,
                **_build_fields(record, owners),
            )
            db.add(task)
            db.commit()
        except AppError as exc:
            db.rollback()
            result.failed += 1
            result.errors.append({"row": row_num, "error": exc.message, "title": title})
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Import row %d failed to save", row_num)
            result.failed += 1
            result.errors.append({"row": row_num, "error": exc.__class__.__name__, "title": title})
            continue

        result.success += 1
        result.created.append({"id": str(task.id), "title": task.title})

    logger.info(
        "Task import org=%s project=%s total=%d success=%d failed=%d",
        org_id, project_id, result.total, result.success, result.failed,
    )
    return result


def import_task_rows(
    db: Session,
    org_id: UUID,
    project_id: UUID,
    created_by: UUID,
    rows: list[dict[str, Any]],
) -> ImportResult:
    """Import JSON rows; row numbers in the summary are 1-based positions."""
    if not isinstance(rows, list) or not rows:
        raise ValidationError("tasks must be a non-empty array")

    records = []
    for index, row in enumerate(rows, start=1):
        record: dict[str, Any] = {}
        if isinstance(row, dict):
            for key, value in row.items():
                target = JSON_FIELD_ALIASES.get(key)
                if target:
                    record[target] = value.strip() if isinstance(value, str) else value
        records.append((index, record))
    return import_records(db, org_id, project_id, created_by, records)


def import_task_file(
    db: Session,
    org_id: UUID,
    project_id: UUID,
    created_by: UUID,
    filename: str,
    content: bytes,
) -> ImportResult:
    records = rows_from_file(filename, content)
    return import_records(db, org_id, project_id, created_by, records)


def import_task_file_from_s3(
    db: Session,
    org_id: UUID,
    project_id: UUID,
    created_by: UUID,
    file_key: str,
    s3_client=None,
) -> ImportResult:
    """Import an uploaded spreadsheet from the uploads bucket, then delete it."""
    from botocore.exceptions import BotoCoreError, ClientError

    from projecthub.services.storage_client import get_s3_client

    if not file_key:
        raise ValidationError("fileKey is required")
    if not settings.S3_BUCKET:
        raise ValidationError("File uploads are not configured")

    client = s3_client or get_s3_client()
    try:
        obj = client.get_object(Bucket=settings.S3_BUCKET, Key=file_key)
        content = obj["Body"].read()
    except ClientError as exc:
        raise NotFoundError("Uploaded file not found") from exc

    result = import_task_file(db, org_id, project_id, created_by, file_key, content)

    try:
        client.delete_object(Bucket=settings.S3_BUCKET, Key=file_key)
    except (BotoCoreError, ClientError):
        logger.warning("Failed to delete imported upload key=%s", file_key)
    return result
