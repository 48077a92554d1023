import os
import re
import shutil
from pathlib import Path
from typing import List, Union

from .errors import ImportCopyFailed, ImportNoManifest, LibraryImportError
from .logger import get_logger
from .manifest import has_manifest, load_manifest
from .models import GameRecord
from .paths import StorageLayout

logger = get_logger(__name__)

_UNSAFE_NAME = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def destination_name(record: GameRecord) -> str:
    """Folder name for a bundle inside managed storage."""
    for candidate in (record.name, record.id):
        cleaned = _UNSAFE_NAME.sub("_", candidate or "").strip().strip(".")
        if cleaned:
            return cleaned
    raise ImportNoManifest(f"Bundle at {record.install_path} has no usable name or id.")


def copy_tree(source: Path, destination: Path) -> List[str]:
    """Copy every file under ``source`` into ``destination``, overwriting.

    Keeps going after a failure; returns ``"<relpath>: <error>"`` for each file
    or directory that could not be copied.
    """
    failures: List[str] = []

    def _onerror(err: OSError):
        failures.append(f"{getattr(err, 'filename', source)}: {err.strerror or err}")

    for cur, dirs, files in os.walk(source, onerror=_onerror, followlinks=True):
        cur_path = Path(cur)
        rel_dir = cur_path.relative_to(source)
        target_dir = destination / rel_dir
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            failures.append(f"{rel_dir.as_posix()}: {e}")
            dirs[:] = []
            continue
        for name in files:
            rel = (rel_dir / name).as_posix()
            try:
                shutil.copy(cur_path / name, target_dir / name)
                logger.debug("Copied %s", rel)
            except OSError as e:
                failures.append(f"{rel}: {e}")
    return failures


def import_bundle(source_dir: Union[str, Path], layout: StorageLayout, rescan=None) -> GameRecord:
    """Copy an external bundle into managed storage and return its installed record.

    ``rescan`` is anything with a ``request()`` method (see ``catalog.RescanSignal``);
    it is raised whenever files have been copied, including partial copies.
    """
    source = Path(source_dir).expanduser().absolute()
    if not source.is_dir():
        raise ImportNoManifest(f"Folder '{source}' does not exist.")
    if not has_manifest(source):
        raise ImportNoManifest(f"Folder '{source}' does not contain 'Info.json' or 'Info'.")

    parsed = load_manifest(source, layout)
    if not parsed.ok:
        raise ImportNoManifest(f"Manifest in '{source}' is unusable: {parsed.problem}")

    destination = layout.games / destination_name(parsed.record)
    if destination.resolve() == source.resolve():
        raise LibraryImportError(f"'{source}' is already in the library.")

    try:
        destination.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ImportCopyFailed(f"Cannot create '{destination}': {e}", [str(destination)], str(destination)) from e

    logger.info("Importing '%s' from %s to %s", parsed.record.name, source, destination)
    failures = copy_tree(source, destination)

    if rescan is not None:
        rescan.request()

    if failures:
        logger.error("Import of '%s' finished with %d error(s)", parsed.record.name, len(failures))
        raise ImportCopyFailed(
            f"Copied '{parsed.record.name}' to {destination} with errors:\n" + "\n".join(failures),
            failures,
            str(destination),
        )

    installed = load_manifest(destination, layout)
    logger.info("Imported '%s' to %s", installed.record.name, destination)
    return installed.record


def remove_bundle(record: GameRecord, layout: StorageLayout, rescan=None) -> Path:
    """Delete an installed bundle. Only folders inside the managed games directory are touched."""
    target = Path(record.install_path)
    if not layout.contains(target):
        raise LibraryImportError(f"Refusing to delete '{target}': not inside {layout.games}")
    if not target.is_dir():
        raise LibraryImportError(f"'{target}' does not exist.")
    shutil.rmtree(target)
    logger.info("Removed '%s' (%s)", record.name, target)
    if rescan is not None:
        rescan.request()
    return target
