from typing import List, Optional


class WyneError(Exception):
    """Base class for every error raised by the launcher core."""


# ── manifests ────────────────────────────────────────────────────────────────

class ManifestError(WyneError):
    def __init__(self, bundle_dir: str, message: str):
        super().__init__(message)
        self.bundle_dir = bundle_dir


class ManifestMissing(ManifestError):
    pass


class ManifestMalformed(ManifestError):
    pass


# ── import ───────────────────────────────────────────────────────────────────

class LibraryImportError(WyneError):
    pass


class ImportNoManifest(LibraryImportError):
    pass


class ImportCopyFailed(LibraryImportError):
    def __init__(self, message: str, failed: Optional[List[str]] = None, destination: str = ""):
        super().__init__(message)
        self.failed = failed or []
        self.destination = destination


# ── environment / launch ─────────────────────────────────────────────────────

class ToolNotFound(WyneError):
    pass


class LaunchSpawnFailed(WyneError):
    pass


class RecordNotLaunchable(WyneError):
    pass
