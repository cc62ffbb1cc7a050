"""
Content Store - reads and writes the website's JSON content files.

Documents are opaque JSON values. Writes keep the repository's formatting
convention (two-space indent, UTF-8, no ASCII escaping, trailing newline kept
as found) and are atomic: a temp file in the same directory replaces the
target with os.replace.
"""
import fnmatch
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Union

from services.models import ContentFileInfo
from utils import field_path

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def atomic_write_text(target: Path, text: str) -> None:
    """Write text to `target` via a temp file and os.replace."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class ContentStore:
    def __init__(self, root: PathLike, tracked_files: Optional[List[str]] = None, exclude: Optional[List[str]] = None):
        self.root = Path(root)
        self.tracked_files = list(tracked_files or [])
        self.exclude = list(exclude or [])

    def is_available(self) -> bool:
        return self.root.is_dir() and bool(self.tracked_paths())

    def resolve(self, path: PathLike) -> Path:
        """Absolute path for a content-relative path.

        Raises:
            ValueError: if the path escapes the content root
        """
        root = self.root.resolve()
        candidate = Path(path)
        full = (candidate if candidate.is_absolute() else root / candidate).resolve()
        if full != root and root not in full.parents:
            raise ValueError(f"Path escapes content root: {path}")
        return full

    def relative(self, path: PathLike) -> str:
        return self.resolve(path).relative_to(self.root.resolve()).as_posix()

    def _excluded(self, rel: str) -> bool:
        return any(fnmatch.fnmatch(rel, pattern) for pattern in self.exclude)

    def tracked_paths(self) -> List[str]:
        """Relative posix paths of tracked files that currently exist."""
        if not self.root.is_dir():
            return []
        if self.tracked_files:
            paths = []
            for name in self.tracked_files:
                try:
                    full = self.resolve(name)
                except ValueError:
                    logger.warning("Tracked file %s is outside the content root; skipped", name)
                    continue
                if not full.is_file():
                    logger.warning("Tracked file %s does not exist; skipped", name)
                    continue
                paths.append(self.relative(full))
        else:
            root = self.root.resolve()
            paths = sorted(p.relative_to(root).as_posix() for p in root.rglob("*.json") if p.is_file())
        return [p for p in paths if not self._excluded(p)]

    def list_files(self) -> List[ContentFileInfo]:
        files = []
        for rel in self.tracked_paths():
            stat = self.resolve(rel).stat()
            files.append(ContentFileInfo(
                path=rel,
                section=Path(rel).stem,
                size=stat.st_size,
                modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
            ))
        return files

    def read_bytes(self, path: PathLike) -> bytes:
        return self.resolve(path).read_bytes()

    def read(self, path: PathLike) -> Any:
        """Parse a content file as JSON.

        Raises:
            FileNotFoundError, json.JSONDecodeError
        """
        with open(self.resolve(path), "r", encoding="utf-8") as f:
            return json.load(f)

    def write(self, path: PathLike, document: Any) -> None:
        full = self.resolve(path)
        trailing_newline = True
        if full.exists():
            existing = full.read_bytes()
            trailing_newline = existing.endswith(b"\n") if existing else True
        text = json.dumps(document, indent=2, ensure_ascii=False)
        if trailing_newline:
            text += "\n"
        atomic_write_text(full, text)
        logger.debug("Wrote %s (%d bytes)", full, len(text.encode("utf-8")))

    def get_field(self, path: PathLike, field: str) -> Any:
        return field_path.get_field(self.read(path), field)
