"""
Persistence for the uploaded workbook and the administrator settings.

Two narrow interfaces (load latest / save) with a file-backed implementation
for the app and an in-memory one for tests and embedding.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from ..blueprint.models import Blueprint, BlueprintOverrides
from ..engine.models import LineOverride
from ..workbook.snapshot import WorkbookSnapshot

logger = logging.getLogger(__name__)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class WorkbookRecord:
    """The latest uploaded workbook plus everything derived from it."""
    filename: str
    data: bytes
    mime_type: str = XLSX_MIME
    uploaded_at: str = field(default_factory=utc_now)
    uploaded_by: Optional[str] = None
    snapshot: Optional[WorkbookSnapshot] = None
    blueprint: Optional[Blueprint] = None
    blueprint_model: Optional[str] = None
    blueprint_generated_at: Optional[str] = None
    blueprint_error: Optional[str] = None
    blueprint_overrides: Optional[BlueprintOverrides] = None

    @property
    def size(self) -> int:
        return len(self.data or b"")

    @property
    def has_binary(self) -> bool:
        return bool(self.data)

    def to_dict(self, include_snapshot: bool = True) -> dict:
        """JSON form without the binary payload."""
        return {
            "filename": self.filename,
            "mimeType": self.mime_type,
            "size": self.size,
            "uploadedAt": self.uploaded_at,
            "uploadedBy": self.uploaded_by,
            "snapshot": self.snapshot.to_dict() if self.snapshot and include_snapshot else None,
            "blueprint": self.blueprint.to_dict() if self.blueprint else None,
            "blueprintModel": self.blueprint_model,
            "blueprintGeneratedAt": self.blueprint_generated_at,
            "blueprintError": self.blueprint_error,
            "blueprintOverrides": self.blueprint_overrides.to_dict() if self.blueprint_overrides else None,
        }

    @classmethod
    def from_dict(cls, data: dict, binary: bytes) -> "WorkbookRecord":
        return cls(
            filename=data.get("filename") or "pricing-workbook.xlsx",
            data=binary,
            mime_type=data.get("mimeType") or XLSX_MIME,
            uploaded_at=data.get("uploadedAt") or utc_now(),
            uploaded_by=data.get("uploadedBy"),
            snapshot=WorkbookSnapshot.from_dict(data["snapshot"]) if data.get("snapshot") else None,
            blueprint=Blueprint.from_dict(data["blueprint"]) if data.get("blueprint") else None,
            blueprint_model=data.get("blueprintModel"),
            blueprint_generated_at=data.get("blueprintGeneratedAt"),
            blueprint_error=data.get("blueprintError"),
            blueprint_overrides=(
                BlueprintOverrides.from_dict(data["blueprintOverrides"]) if data.get("blueprintOverrides") else None
            ),
        )


@dataclass
class PricingSettings:
    """Administrator defaults."""
    default_segment: Optional[str] = None
    default_price_tier: Optional[str] = None
    line_overrides: list[LineOverride] = field(default_factory=list)
    export_recipients: list[str] = field(default_factory=list)
    workbook_mapping: Optional[dict] = None
    last_updated_by: Optional[str] = None
    updated_at: str = field(default_factory=utc_now)

    def overrides_by_line(self) -> dict[str, LineOverride]:
        return {override.line_id: override for override in self.line_overrides if override.line_id}

    def to_dict(self) -> dict:
        return {
            "defaultClientSize": self.default_segment,
            "defaultPricePoint": self.default_price_tier,
            "lineOverrides": [override.to_dict() for override in self.line_overrides],
            "exportedEmailRecipients": list(self.export_recipients),
            "workbookMapping": self.workbook_mapping,
            "lastUpdatedBy": self.last_updated_by,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PricingSettings":
        return cls(
            default_segment=data.get("defaultClientSize"),
            default_price_tier=data.get("defaultPricePoint"),
            line_overrides=[
                LineOverride.from_dict(item) for item in data.get("lineOverrides") or [] if isinstance(item, dict)
            ],
            export_recipients=[r for r in data.get("exportedEmailRecipients") or [] if isinstance(r, str) and r],
            workbook_mapping=data.get("workbookMapping"),
            last_updated_by=data.get("lastUpdatedBy"),
            updated_at=data.get("updatedAt") or utc_now(),
        )


class WorkbookStore(Protocol):
    def load_latest(self) -> Optional[WorkbookRecord]: ...

    def save(self, record: WorkbookRecord) -> None: ...


class SettingsStore(Protocol):
    def load(self) -> Optional[PricingSettings]: ...

    def save(self, settings: PricingSettings) -> None: ...


class InMemoryWorkbookStore:
    def __init__(self, record: Optional[WorkbookRecord] = None):
        self._record = record

    def load_latest(self) -> Optional[WorkbookRecord]:
        return self._record

    def save(self, record: WorkbookRecord) -> None:
        self._record = record


class InMemorySettingsStore:
    def __init__(self, settings: Optional[PricingSettings] = None):
        self._settings = settings

    def load(self) -> Optional[PricingSettings]:
        return self._settings

    def save(self, settings: PricingSettings) -> None:
        self._settings = settings


class FileWorkbookStore:
    """Keeps the latest workbook as workbook.xlsx next to a record.json."""

    BINARY_NAME = "workbook.xlsx"
    RECORD_NAME = "record.json"

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    @property
    def binary_path(self) -> Path:
        return self.directory / self.BINARY_NAME

    @property
    def record_path(self) -> Path:
        return self.directory / self.RECORD_NAME

    def load_latest(self) -> Optional[WorkbookRecord]:
        if not self.record_path.exists():
            return None
        with open(self.record_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        binary = self.binary_path.read_bytes() if self.binary_path.exists() else b""
        return WorkbookRecord.from_dict(data, binary)

    def save(self, record: WorkbookRecord) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.binary_path.write_bytes(record.data or b"")
        with open(self.record_path, 'w', encoding='utf-8') as f:
            json.dump(record.to_dict(), f, indent=2)
        logger.debug("Stored workbook %s (%d bytes)", record.filename, record.size)


class FileSettingsStore:
    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[PricingSettings]:
        if not self.path.exists():
            return None
        with open(self.path, 'r', encoding='utf-8') as f:
            return PricingSettings.from_dict(json.load(f))

    def save(self, settings: PricingSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(settings.to_dict(), f, indent=2)
