import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .logger import get_logger

logger = get_logger(__name__)


class SettingType(str, Enum):
    LINE_EDIT = "LineEdit"
    CHECK_BOX = "CheckBox"
    TOGGLE_BUTTON = "ToggleButton"
    SPIN_BOX = "SpinBox"
    STRING_ARRAY = "StringArray"


@dataclass
class SettingDefinition:
    key: str
    label: str
    type: SettingType
    default: Any

    def to_dict(self) -> Dict:
        if isinstance(self.default, list):
            default: Any = [str(v) for v in self.default]
        elif self.default is None:
            default = ""
        else:
            default = str(self.default)
        return {"key": self.key, "label": self.label, "type": self.type.value, "default": default}


REQUIRED_SETTINGS: List[SettingDefinition] = [
    SettingDefinition("GameSearchDirs", "Game Search Directories", SettingType.STRING_ARRAY, ["~/Games"]),
    SettingDefinition("UpdateLinks", "Update Links", SettingType.STRING_ARRAY, ["https://updates.example.com"]),
    SettingDefinition("ServerLinks", "Server Links", SettingType.STRING_ARRAY,
                      ["https://server1.example.com", "https://server2.example.com"]),
    SettingDefinition("NewsPaperLinks", "News Links", SettingType.STRING_ARRAY, ["https://news.example.com"]),
]


def _parse_default(raw: Any) -> Any:
    if isinstance(raw, list):
        return [str(v).strip() for v in raw]
    if isinstance(raw, str) and "," in raw:
        return [p.strip() for p in raw.split(",") if p.strip()]
    return raw


def _parse_type(raw: Any) -> SettingType:
    try:
        return SettingType(str(raw))
    except ValueError:
        return SettingType.LINE_EDIT


def load_definitions(settings_file: Path) -> List[SettingDefinition]:
    if not settings_file.exists():
        logger.error("Settings file not found: %s", settings_file)
        return []
    try:
        data = json.loads(settings_file.read_text("utf-8"))
    except (OSError, ValueError) as e:
        logger.error("Cannot read settings %s: %s", settings_file, e)
        return []
    if not isinstance(data, list):
        logger.error("Settings root is not an array: %s", settings_file)
        return []

    defs: List[SettingDefinition] = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        key = entry.get("key")
        if not isinstance(key, str) or not key:
            logger.warning("Invalid setting entry skipped: %r", entry)
            continue
        d = SettingDefinition(
            key=key,
            label=str(entry.get("label") or key),
            type=_parse_type(entry.get("type")),
            default=_parse_default(entry.get("default", "")),
        )
        defs.append(d)
        logger.debug("Loaded setting: %s (%s) = %r", d.key, d.type.value, d.default)
    return defs


def save_definitions(settings_file: Path, defs: List[SettingDefinition]) -> None:
    settings_file.parent.mkdir(parents=True, exist_ok=True)
    data = [d.to_dict() for d in defs]
    settings_file.write_text(json.dumps(data, indent="\t"), encoding="utf-8")
    logger.info("Saved settings to %s", settings_file)


def fix_settings(settings_file: Path) -> List[SettingDefinition]:
    """Make sure every required setting is present; rewrite the file."""
    loaded = load_definitions(settings_file) if settings_file.exists() else []
    present = {d.key for d in loaded}
    for req in REQUIRED_SETTINGS:
        if req.key not in present:
            logger.info("Adding missing setting: %s", req.key)
            loaded.append(SettingDefinition(req.key, req.label, req.type, list(req.default)))
    save_definitions(settings_file, loaded)
    return loaded


def _cast(value: Any, like: Any) -> Any:
    if like is None or isinstance(value, type(like)):
        return value
    if isinstance(like, bool):
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "1", "yes", "on"):
                return True
            if lowered in ("false", "0", "no", "off", ""):
                return False
            raise ValueError(f"not a boolean: {value!r}")
        return bool(value)
    if isinstance(like, list):
        if isinstance(value, str):
            return [p.strip() for p in value.split(",") if p.strip()]
        return list(value)
    return type(like)(value)


class SettingsStore:
    """Current values keyed by setting key, seeded from the schema defaults."""

    def __init__(self, definitions: Optional[List[SettingDefinition]] = None):
        self.definitions: List[SettingDefinition] = list(definitions or [])
        self.values: Dict[str, Any] = {d.key: d.default for d in self.definitions}

    @classmethod
    def load(cls, settings_file: Path) -> "SettingsStore":
        return cls(fix_settings(settings_file))

    def set(self, key: str, value: Any) -> None:
        self.values[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self.values:
            logger.warning('Setting "%s" not found, returning default = %r', key, default)
            return default
        try:
            return _cast(self.values[key], default)
        except (TypeError, ValueError) as e:
            logger.error('Failed to cast setting "%s" to %s: %s', key, type(default).__name__, e)
            return default

    def to_dict(self) -> Dict:
        return {
            "definitions": [d.to_dict() for d in self.definitions],
            "values": dict(self.values),
        }
