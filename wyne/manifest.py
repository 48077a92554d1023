"""
Bundle manifest parsing.

A bundle describes itself with either ``Info.json`` (structured) or ``Info``
(``Key: value`` lines). ``load_manifest`` picks the dialect by file presence
and always returns a ``ParseResult``; problems are carried in
``ParseResult.problem`` and never raised.
"""
import json
import re
import uuid
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .errors import ManifestError, ManifestMalformed, ManifestMissing
from .logger import get_logger
from .models import LINE_MANIFEST, STRUCTURED_MANIFEST, GameRecord, ManifestDialect, ParseResult
from .paths import StorageLayout
from .utils import IMAGE_EXTS, detect_root_files, pick_best_image

logger = get_logger(__name__)

LINE_DEFAULTS = {
    "description": "",
    "publisher": "Unknown",
    "source_label": "This computer",
    "version": "1.0",
}

STRUCTURED_DEFAULTS = {
    "publisher": "Unknown",
    "version": "1.0",
}

_WS_RUN = re.compile(r"\s+")


def placeholder_name() -> str:
    return f"Game_{uuid.uuid4()}"


def manifest_path(bundle_dir: Path) -> Optional[Path]:
    """The manifest file that decides the dialect, or None."""
    for name in (STRUCTURED_MANIFEST, LINE_MANIFEST):
        p = bundle_dir / name
        if p.is_file():
            return p
    return None


def has_manifest(bundle_dir: Union[str, Path]) -> bool:
    return manifest_path(Path(bundle_dir)) is not None


# ──────────────────────────────────────────────────────────────────────────────
# Line dialect
# ──────────────────────────────────────────────────────────────────────────────

def normalize_version(raw: str) -> str:
    return _WS_RUN.sub("_", raw.strip().upper())


def parse_profiles(value: str) -> "OrderedDict[str, str]":
    """``{A: cmd1, B: cmd2}`` -> ordered mapping. Splits pairs on every comma."""
    profiles: "OrderedDict[str, str]" = OrderedDict()
    value = value.strip()
    if not (value.startswith("{") and value.endswith("}")):
        return profiles
    for pair in value[1:-1].split(","):
        key, sep, command = pair.partition(":")
        if not sep:
            continue
        profiles[key.strip()] = command.strip()
    return profiles


def parse_line_manifest(lines: Iterable[str], bundle_dir: Path) -> Dict:
    fields: Dict = {
        "id": bundle_dir.name,
        "name": None,
        "cover": "",
        "launch_profiles": OrderedDict(),
        "web_page": "",
    }
    fields.update(LINE_DEFAULTS)

    for raw in lines:
        line = raw.strip()
        key, sep, value = line.partition(":")
        if not sep:
            continue
        value = value.strip()
        if key == "Name":
            fields["name"] = value
        elif key == "GameCover":
            fields["cover"] = value
        elif key == "About":
            fields["description"] = value
        elif key == "Profiles":
            fields["launch_profiles"] = parse_profiles(value)
        elif key == "Version":
            fields["version"] = normalize_version(value)
        elif key == "Source":
            fields["source_label"] = value
        elif key == "Developpers":
            fields["publisher"] = value
        elif key == "WebPage":
            fields["web_page"] = value

    if not fields["name"]:
        fields["name"] = placeholder_name()
    return fields


# ──────────────────────────────────────────────────────────────────────────────
# Structured dialect
# ──────────────────────────────────────────────────────────────────────────────

def _scalar(data: Dict, key: str, default: str = "") -> str:
    value = data.get(key)
    if value is None:
        return default
    return value if isinstance(value, str) else str(value)


def _string_list(data: Dict, key: str) -> List[str]:
    value = data.get(key)
    if not isinstance(value, list):
        return []
    return [v if isinstance(v, str) else str(v) for v in value]


def parse_structured_manifest(data, bundle_dir: Path, layout: Optional[StorageLayout]) -> Dict:
    if not isinstance(data, dict):
        raise ManifestMalformed(str(bundle_dir), f"{STRUCTURED_MANIFEST} is not an object")

    runner = _scalar(data, "runner")
    if layout is not None:
        runner = layout.substitute(runner)

    return {
        "id": _scalar(data, "id") or bundle_dir.name,
        "name": _scalar(data, "name") or bundle_dir.name,
        "publisher": _scalar(data, "publisher", STRUCTURED_DEFAULTS["publisher"]),
        "version": _scalar(data, "version", STRUCTURED_DEFAULTS["version"]),
        "runner": runner,
        "runner_command": _scalar(data, "runcmd"),
        "executable_relative_path": _scalar(data, "exe"),
        "description": _scalar(data, "description"),
        "cover": _scalar(data, "cover"),
        "languages": _string_list(data, "languages"),
        "tags": _string_list(data, "tags"),
    }


# ──────────────────────────────────────────────────────────────────────────────
# Factory
# ──────────────────────────────────────────────────────────────────────────────

def resolve_cover(bundle_dir: Path, declared: str) -> str:
    if declared:
        p = bundle_dir / declared
        if p.is_file():
            return str(p)
    images = detect_root_files(bundle_dir, IMAGE_EXTS)
    chosen = pick_best_image(bundle_dir, images) if images else None
    if chosen:
        return str(bundle_dir / chosen)
    # keep the declared path even if missing; callers check existence
    return str(bundle_dir / declared) if declared else ""


def invalid_record(bundle_dir: Path, dialect: Optional[ManifestDialect] = None) -> GameRecord:
    return GameRecord(
        id=bundle_dir.name or placeholder_name(),
        name=placeholder_name(),
        install_path=bundle_dir,
        description=LINE_DEFAULTS["description"],
        publisher=LINE_DEFAULTS["publisher"],
        source_label=LINE_DEFAULTS["source_label"],
        version=LINE_DEFAULTS["version"],
        is_valid=False,
        dialect=dialect,
    )


def _read_text(path: Path, errors: str = "strict") -> str:
    try:
        return path.read_text(encoding="utf-8-sig", errors=errors)
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestMalformed(str(path.parent), f"cannot read {path.name}: {e}") from e


def _build(bundle_dir: Path, layout: Optional[StorageLayout]) -> GameRecord:
    path = manifest_path(bundle_dir)
    if path is None:
        raise ManifestMissing(str(bundle_dir), f"no {STRUCTURED_MANIFEST} or {LINE_MANIFEST} in {bundle_dir}")

    if path.name == STRUCTURED_MANIFEST:
        dialect = ManifestDialect.STRUCTURED
        text = _read_text(path)
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ManifestMalformed(str(bundle_dir), f"invalid JSON in {path.name}: {e}") from e
        fields = parse_structured_manifest(data, bundle_dir, layout)
    else:
        dialect = ManifestDialect.LINE
        # undecodable bytes become U+FFFD; only a missing file invalidates this dialect
        text = _read_text(path, errors="replace")
        fields = parse_line_manifest(text.splitlines(), bundle_dir)

    cover = resolve_cover(bundle_dir, fields.pop("cover", ""))
    return GameRecord(install_path=bundle_dir, cover_image_path=cover,
                      is_valid=True, dialect=dialect, **fields)


def load_manifest(bundle_dir: Union[str, Path], layout: Optional[StorageLayout] = None) -> ParseResult:
    """Parse a bundle directory; never raises."""
    folder = Path(bundle_dir).absolute()
    try:
        record = _build(folder, layout)
    except ManifestError as e:
        logger.warning("Invalid bundle %s: %s", folder, e)
        dialect = None
        p = manifest_path(folder) if folder.is_dir() else None
        if p is not None:
            dialect = ManifestDialect.STRUCTURED if p.name == STRUCTURED_MANIFEST else ManifestDialect.LINE
        return ParseResult(record=invalid_record(folder, dialect), problem=e)
    except Exception as e:  # one corrupt bundle must not abort a scan
        logger.exception("Unexpected error parsing %s", folder)
        problem = ManifestMalformed(str(folder), f"unexpected error: {e}")
        return ParseResult(record=invalid_record(folder), problem=problem)

    logger.debug("Loaded %s (%s) from %s", record.name, record.version, folder)
    return ParseResult(record=record)


def parse(bundle_dir: Union[str, Path], layout: Optional[StorageLayout] = None) -> GameRecord:
    return load_manifest(bundle_dir, layout).record
