import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

APP_DIR_NAME = "Wyne"
PREFIX_PLACEHOLDER = "$WYNE_PREFIX"
SYSBIN_PLACEHOLDER = "$WYNE_SYSBIN"


def default_data_root(environ: Optional[Mapping[str, str]] = None,
                      platform: Optional[str] = None) -> Path:
    """Platform application-data directory that holds the ``Wyne`` tree."""
    env = os.environ if environ is None else environ
    plat = platform or sys.platform
    home = Path(env.get("HOME") or env.get("USERPROFILE") or Path.home())

    if plat.startswith("win"):
        base = Path(env.get("APPDATA") or home / "AppData" / "Roaming")
    elif plat == "darwin":
        base = home / "Library" / "Application Support"
    else:
        xdg = env.get("XDG_DATA_HOME")
        base = Path(xdg) if xdg else home / ".local" / "share"
    return base / APP_DIR_NAME


@dataclass(frozen=True)
class StorageLayout:
    root: Path

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StorageLayout":
        env = os.environ if environ is None else environ
        override = env.get("WYNE_HOME")
        root = Path(override) if override else default_data_root(env)
        return cls(root=root.expanduser().resolve())

    @property
    def prefix(self) -> Path:
        return self.root / "Application Data"

    @property
    def games(self) -> Path:
        return self.prefix / "Games"

    @property
    def settings_dir(self) -> Path:
        return self.prefix / "Settings"

    @property
    def settings_file(self) -> Path:
        return self.settings_dir / "Settings.json"

    @property
    def system(self) -> Path:
        return self.prefix / "System"

    @property
    def sysbin(self) -> Path:
        return self.system / "Binary"

    @property
    def exe_info(self) -> Path:
        return self.system / "Data" / "WyneExeInfo"

    def ensure(self) -> "StorageLayout":
        for d in (self.games, self.settings_dir, self.sysbin, self.exe_info.parent):
            d.mkdir(parents=True, exist_ok=True)
        return self

    def placeholders(self) -> Dict[str, str]:
        # prefix keeps its trailing separator so "$WYNE_PREFIX" + "System" stays a valid path
        return {
            PREFIX_PLACEHOLDER: str(self.prefix) + os.sep,
            SYSBIN_PLACEHOLDER: str(self.sysbin),
        }

    def substitute(self, text: str) -> str:
        for placeholder, value in self.placeholders().items():
            text = text.replace(placeholder, value)
        return text

    def contains(self, path: Path) -> bool:
        """True when ``path`` is strictly inside the managed games directory."""
        games = self.games.resolve()
        target = Path(path).resolve()
        try:
            rel = target.relative_to(games)
        except ValueError:
            return False
        return str(rel) not in ("", ".")
