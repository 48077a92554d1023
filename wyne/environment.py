"""
Host capability probe.

``probe()`` builds one ``EnvironmentSnapshot``: OS family, architecture, WSL
detection, and absolute paths of the shells, package managers, compatibility
layers and download tools a bundle command might call. Every lookup is
optional; a tool that cannot be found is recorded as an empty string.
"""
from __future__ import annotations

import os
import platform
import re
import struct
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import ToolNotFound
from .logger import get_logger

logger = get_logger(__name__)

LOCATE_TIMEOUT = 3.0
PROC_VERSION = "/proc/version"
WSL_ENV_MARKERS = ("WSLENV", "WSL_DISTRO_NAME")


class OSFamily(str, Enum):
    WINDOWS = "Windows"
    MACOS = "MacOS"
    LINUX = "Linux"


# variable name -> executable names tried in order
WINDOWS_TOOLS: List[Tuple[str, Tuple[str, ...]]] = [
    ("CHOCOLATEY", ("choco",)),
    ("SCOOP", ("scoop",)),
    ("POWERSHELL", ("pwsh", "powershell")),
    ("WINE", ("wine",)),
]

UNIX_TOOLS: List[Tuple[str, Tuple[str, ...]]] = [
    ("WINE", ("wine",)),
    ("WINE64", ("wine64",)),
    ("BREW", ("brew",)),
    ("PORT", ("port",)),
    ("APT", ("apt", "apt-get")),
    ("DNF", ("dnf",)),
    ("PACMAN", ("pacman",)),
    ("ZYPPER", ("zypper",)),
    ("FLATPAK", ("flatpak",)),
    ("SNAP", ("snap",)),
    ("APTITUDE", ("aptitude",)),
]

GENERIC_TOOLS: List[Tuple[str, Tuple[str, ...]]] = [
    ("CURL", ("curl",)),
    ("WGET", ("wget",)),
    ("GIT", ("git",)),
]

UNIX_COMMON_PATHS: Dict[str, Tuple[str, ...]] = {
    "WINE": ("/usr/bin/wine", "/usr/local/bin/wine", "/opt/homebrew/bin/wine", "/opt/wine/bin/wine"),
    "BREW": ("/opt/homebrew/bin/brew", "/usr/local/bin/brew"),
}


@dataclass(frozen=True)
class EnvironmentSnapshot:
    os_family: OSFamily
    cpu_arch: str
    process_arch: str
    is_wsl: bool
    tool_paths: Mapping[str, str]
    variables: Mapping[str, str]

    @property
    def is_windows(self) -> bool:
        return self.os_family is OSFamily.WINDOWS

    @property
    def summary(self) -> str:
        return self.variables.get("SUMMARY", "")

    def tool(self, name: str) -> str:
        return self.tool_paths.get(name.upper(), "")

    def lookup(self, name: str) -> Optional[str]:
        """Case-insensitive variable lookup."""
        return self.variables.get(name.upper())

    def to_dict(self) -> Dict:
        return {
            "os_family": self.os_family.value,
            "cpu_arch": self.cpu_arch,
            "process_arch": self.process_arch,
            "is_wsl": self.is_wsl,
            "tool_paths": dict(self.tool_paths),
            "variables": dict(self.variables),
        }


# ──────────────────────────────────────────────────────────────────────────────
# Host identification
# ──────────────────────────────────────────────────────────────────────────────

def detect_os_family(system: Optional[str] = None) -> OSFamily:
    s = (system if system is not None else platform.system()).lower()
    if s.startswith("win") or s.startswith("cygwin") or s.startswith("msys"):
        return OSFamily.WINDOWS
    if s == "darwin":
        return OSFamily.MACOS
    return OSFamily.LINUX


def normalize_arch(machine: str) -> str:
    m = (machine or "").lower()
    if m in ("x86_64", "amd64", "x64"):
        return "X64"
    if m in ("aarch64", "arm64", "armv8l"):
        return "Arm64"
    if m.startswith("arm"):
        return "Arm"
    if m in ("i386", "i486", "i586", "i686", "x86"):
        return "X86"
    return machine or "Unknown"


def detect_process_arch(os_arch: str, pointer_bits: Optional[int] = None) -> str:
    bits = pointer_bits if pointer_bits is not None else struct.calcsize("P") * 8
    if bits == 32:
        if os_arch == "X64":
            return "X86"
        if os_arch == "Arm64":
            return "Arm"
    return os_arch


def detect_wsl(os_family: OSFamily, environ: Mapping[str, str], proc_version: str = PROC_VERSION) -> bool:
    if os_family is not OSFamily.LINUX:
        return False
    try:
        text = Path(proc_version).read_text(encoding="utf-8", errors="ignore")
        if "microsoft" in text.lower():
            return True
    except OSError:
        pass
    return any(environ.get(k) for k in WSL_ENV_MARKERS)


# ──────────────────────────────────────────────────────────────────────────────
# Tool resolution
# ──────────────────────────────────────────────────────────────────────────────

def locate_with(locator: str, exe_name: str, env: Mapping[str, str], timeout: float = LOCATE_TIMEOUT) -> str:
    """Run ``which``/``where`` and return the first existing path it prints."""
    if not exe_name or not exe_name.strip():
        raise ToolNotFound("empty tool name")
    try:
        proc = subprocess.run(
            [locator, exe_name],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            stdin=subprocess.DEVNULL,
            env=dict(env),
            timeout=timeout,
            text=True,
            errors="replace",
        )
    except (OSError, subprocess.SubprocessError) as e:
        raise ToolNotFound(f"{locator} {exe_name}: {e}") from e

    for line in proc.stdout.splitlines():
        candidate = line.strip()
        if candidate and os.path.isfile(candidate):
            return candidate
    raise ToolNotFound(f"{exe_name} not on PATH")


def first_existing(paths: Sequence[str]) -> str:
    for p in paths:
        try:
            if p and os.path.isfile(p):
                return p
        except OSError:
            continue
    return ""


def resolve_tool(names: Sequence[str], locator: str, env: Mapping[str, str],
                 fallbacks: Sequence[str] = (), timeout: float = LOCATE_TIMEOUT) -> str:
    for name in names:
        try:
            return locate_with(locator, name, env, timeout)
        except ToolNotFound as e:
            logger.debug("Tool lookup miss: %s", e)
    return first_existing(fallbacks)


def candidate_tools(os_family: OSFamily) -> List[Tuple[str, Tuple[str, ...]]]:
    platform_tools = WINDOWS_TOOLS if os_family is OSFamily.WINDOWS else UNIX_TOOLS
    return list(platform_tools) + list(GENERIC_TOOLS)


# ──────────────────────────────────────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────────────────────────────────────

def _flag(value: bool) -> str:
    return "true" if value else "false"


def _summary(v: Dict[str, str]) -> str:
    wine = v.get("WINE") or "no"
    brew = v.get("BREW") or "no"
    return (f"{v['OS']} | OS_ARCH={v['OS_ARCH']} | PROCESS_ARCH={v['PROCESS_ARCH']} "
            f"| WSL={v['IS_WSL']} | WINE={wine} | BREW={brew}")


def probe(
    environ: Optional[Mapping[str, str]] = None,
    *,
    system: Optional[str] = None,
    machine: Optional[str] = None,
    proc_version: str = PROC_VERSION,
    common_paths: Optional[Mapping[str, Sequence[str]]] = None,
    timeout: float = LOCATE_TIMEOUT,
) -> EnvironmentSnapshot:
    """Build an ``EnvironmentSnapshot`` for this host. Never raises."""
    env = dict(os.environ if environ is None else environ)

    try:
        os_family = detect_os_family(system)
    except Exception as e:  # platform queries are best effort
        logger.warning("Could not determine OS family: %s", e)
        os_family = OSFamily.LINUX

    try:
        os_arch = normalize_arch(machine if machine is not None else platform.machine())
        process_arch = detect_process_arch(os_arch)
    except Exception as e:
        logger.warning("Could not determine CPU architecture: %s", e)
        os_arch = process_arch = "Unknown"

    is_wsl = detect_wsl(os_family, env, proc_version)

    if common_paths is None:
        common_paths = {} if os_family is OSFamily.WINDOWS else UNIX_COMMON_PATHS
    locator = "where" if os_family is OSFamily.WINDOWS else "which"

    tools: Dict[str, str] = {}
    for key, names in candidate_tools(os_family):
        tools[key] = resolve_tool(names, locator, env, common_paths.get(key, ()), timeout)
        if tools[key]:
            logger.debug("Resolved %s -> %s", key, tools[key])

    home = env.get("HOME", "")
    v: Dict[str, str] = {
        "OS": os_family.value.upper(),
        "HOME": home,
        "USERPROFILE": env.get("USERPROFILE", ""),
        "USER": env.get("USER") or env.get("USERNAME", ""),
        "SHELL": env.get("SHELL", ""),
        "PATH": env.get("PATH", ""),
        "OS_ARCH": os_arch,
        "PROCESS_ARCH": process_arch,
        "IS_ARM": _flag(os_arch in ("Arm", "Arm64")),
        "IS_X64": _flag(os_arch == "X64"),
        "IS_X86": _flag(os_arch == "X86"),
        "IS_WSL": _flag(is_wsl),
    }
    v.update(tools)

    wineprefix = env.get("WINEPREFIX") or os.path.join(home or os.path.expanduser("~"), ".wine")
    v["WINEPREFIX"] = wineprefix
    v["DEFAULT_WINEPREFIX_EXISTS"] = _flag(os.path.isdir(wineprefix))
    v["SUMMARY"] = _summary(v)

    logger.info("Environment: %s", v["SUMMARY"])
    return EnvironmentSnapshot(
        os_family=os_family,
        cpu_arch=os_arch,
        process_arch=process_arch,
        is_wsl=is_wsl,
        tool_paths=MappingProxyType(tools),
        variables=MappingProxyType(v),
    )


_VAR_RE = re.compile(r"\$(\{)?([A-Za-z_][A-Za-z0-9_]*)(?(1)\})")


def expand_variables(text: str, variables: Mapping[str, str]) -> str:
    """Replace ``$NAME``/``${NAME}`` with known variables; names match exactly and unknown names stay."""
    def _sub(m: "re.Match[str]") -> str:
        value = variables.get(m.group(2))
        return m.group(0) if value is None else value
    return _VAR_RE.sub(_sub, text)
