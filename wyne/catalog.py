import threading
from pathlib import Path
from typing import List, Optional, Union

from .logger import get_logger
from .manifest import load_manifest
from .models import GameRecord, ParseResult
from .paths import StorageLayout

logger = get_logger(__name__)


class RescanSignal:
    """Flag raised by the importer and consumed by whoever owns the catalog."""

    def __init__(self):
        self._event = threading.Event()

    def request(self) -> None:
        self._event.set()

    def pending(self) -> bool:
        return self._event.is_set()

    def consume(self) -> bool:
        """Return True (and clear the flag) if a rescan was requested."""
        if self._event.is_set():
            self._event.clear()
            return True
        return False


def iter_bundle_dirs(library_root: Path) -> List[Path]:
    try:
        return [p for p in library_root.iterdir() if p.is_dir()]
    except OSError as e:
        logger.warning("Cannot list %s: %s", library_root, e)
        return []


class LibraryCatalog:
    """In-memory list of valid bundles under one library root. Single writer."""

    def __init__(self, library_root: Union[str, Path], layout: Optional[StorageLayout] = None,
                 rescan: Optional[RescanSignal] = None):
        self.library_root = Path(library_root)
        self.layout = layout
        self.rescan = rescan or RescanSignal()
        self.records: List[GameRecord] = []
        self.rejected: List[ParseResult] = []

    def scan(self, library_root: Union[str, Path, None] = None) -> List[GameRecord]:
        """Parse each immediate subdirectory; keep valid records in enumeration order."""
        root = Path(library_root) if library_root is not None else self.library_root
        logger.info("Searching bundles in '%s'", root)
        records: List[GameRecord] = []
        rejected: List[ParseResult] = []

        if root.is_dir():
            for folder in iter_bundle_dirs(root):
                result = load_manifest(folder, self.layout)
                if result.ok:
                    records.append(result.record)
                else:
                    logger.info("Skipping '%s': %s", folder.name, result.problem)
                    rejected.append(result)
        else:
            logger.warning("Library root '%s' does not exist", root)

        self.records = records
        self.rejected = rejected
        logger.info("Catalog: %d bundle(s), %d skipped", len(records), len(rejected))
        return list(records)

    def refresh_if_requested(self) -> bool:
        if self.rescan.consume():
            self.scan()
            return True
        return False

    def select(self, record_id: str) -> Optional[GameRecord]:
        for record in self.records:
            if record.id == record_id:
                return record
        return None

    def sorted_by_name(self) -> List[GameRecord]:
        return sorted(self.records, key=lambda r: r.name.lower())

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(list(self.records))
