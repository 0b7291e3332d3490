"""
Centralized settings and path configuration for the pricing core.
"""
import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

from ..blueprint.ai_generator import DEFAULT_MODEL
from ..blueprint.ai_schema import SCHEMA_ERA_FLEXIBLE


def get_project_root() -> Path:
    """Get the project root directory (where pyproject.toml lives)."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists():
            return parent
    # Fallback to 4 levels up from this file
    return Path(__file__).resolve().parent.parent.parent.parent


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.environ.get(name, "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    # Storage
    data_dir: Path

    # AI blueprint generation
    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_MODEL
    openai_timeout: Optional[float] = 60.0
    schema_era: str = SCHEMA_ERA_FLEXIBLE

    # Snapshot caps
    snapshot_max_rows: int = 250
    snapshot_max_columns: int = 64

    log_level: str = "INFO"

    @property
    def workbook_dir(self) -> Path:
        return self.data_dir / 'workbook'

    @property
    def settings_file(self) -> Path:
        return self.data_dir / 'settings.json'

    @property
    def ai_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> 'Settings':
        """Load settings from the environment."""
        root = project_root or get_project_root()
        data_dir = os.environ.get('PRICING_DATA_DIR', '').strip()

        return cls(
            data_dir=Path(data_dir) if data_dir else root / 'data',
            openai_api_key=os.environ.get('OPENAI_API_KEY', '').strip() or None,
            openai_model=os.environ.get('OPENAI_PRICING_MODEL', '').strip() or DEFAULT_MODEL,
            openai_timeout=_env_float('OPENAI_PRICING_TIMEOUT', 60.0),
            schema_era=os.environ.get('PRICING_SCHEMA_ERA', '').strip().lower() or SCHEMA_ERA_FLEXIBLE,
            snapshot_max_rows=_env_int('PRICING_SNAPSHOT_MAX_ROWS', 250),
            snapshot_max_columns=_env_int('PRICING_SNAPSHOT_MAX_COLUMNS', 64),
            log_level=os.environ.get('PRICING_LOG_LEVEL', '').strip().upper() or 'INFO',
        )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings
