from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from .errors import ManifestError

LINE_MANIFEST = "Info"
STRUCTURED_MANIFEST = "Info.json"


class ManifestDialect(str, Enum):
    LINE = "line"
    STRUCTURED = "structured"


@dataclass(frozen=True)
class GameRecord:
    id: str
    name: str
    install_path: Path
    cover_image_path: str = ""
    description: str = ""
    publisher: str = "Unknown"
    version: str = "1.0"
    source_label: str = ""
    web_page: str = ""
    languages: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    launch_profiles: Mapping[str, str] = field(default_factory=dict)
    runner: str = ""
    runner_command: str = ""
    executable_relative_path: str = ""
    is_valid: bool = False
    dialect: Optional[ManifestDialect] = None

    def __post_init__(self):
        # frozen: go through object.__setattr__ to normalise containers
        object.__setattr__(self, "install_path", Path(self.install_path))
        object.__setattr__(self, "languages", tuple(self.languages))
        object.__setattr__(self, "tags", tuple(self.tags))
        object.__setattr__(self, "launch_profiles", MappingProxyType(dict(self.launch_profiles)))

    def executable_path(self) -> str:
        if not self.executable_relative_path:
            return ""
        return str(self.install_path / self.executable_relative_path)

    def with_cover(self, cover: str) -> "GameRecord":
        return replace(self, cover_image_path=cover)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "install_path": str(self.install_path),
            "cover_image_path": self.cover_image_path,
            "description": self.description,
            "publisher": self.publisher,
            "version": self.version,
            "source_label": self.source_label,
            "web_page": self.web_page,
            "languages": list(self.languages),
            "tags": list(self.tags),
            "launch_profiles": dict(self.launch_profiles),
            "runner": self.runner,
            "runner_command": self.runner_command,
            "executable_relative_path": self.executable_relative_path,
            "is_valid": self.is_valid,
            "dialect": self.dialect.value if self.dialect else None,
        }


@dataclass(frozen=True)
class ParseResult:
    record: GameRecord
    problem: Optional[ManifestError] = None

    @property
    def ok(self) -> bool:
        return self.problem is None and self.record.is_valid
