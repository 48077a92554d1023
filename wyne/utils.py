from pathlib import Path
from typing import List, Optional

from PIL import Image

IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".webp"}
DEFAULT_TARGET_AR = 0.75


def detect_root_files(bundle_dir: Path, exts: set) -> List[str]:
    items: List[str] = []
    try:
        for p in bundle_dir.iterdir():
            if p.is_file() and p.suffix.lower() in exts:
                items.append(p.name)
    except OSError:
        pass
    return sorted(items, key=lambda n: n.lower())


def pick_best_image(bundle_dir: Path, candidates: List[str], target_ar: float = DEFAULT_TARGET_AR) -> Optional[str]:
    """Pick the candidate whose aspect ratio is closest to ``target_ar``; larger wins ties."""
    best = None
    best_score = float("inf")
    best_area = -1
    for name in candidates:
        f = bundle_dir / name
        try:
            with Image.open(f) as im:
                w, h = im.size
        except (OSError, ValueError):
            continue
        if w <= 0 or h <= 0:
            continue
        score = abs(w / h - target_ar)
        area = w * h
        if score < best_score or (abs(score - best_score) < 1e-6 and area > best_area):
            best, best_score, best_area = name, score, area
    return best
