"""Local asset storage and per-restore staging.

Item images are referenced by strings such as ``/uploads/items/a.webp``.
A reference is *local* when it is non-empty and is neither a remote URL
nor an inline ``data:`` URI; only local references are bundled.

The archive entry name of a reference is the reference with its leading
``/`` removed, so a restored record resolves to the same file without
rewriting.

Usage:
    from inventory_snapshot.snapshot.assets import LocalAssetStore, StagedAssets

    store = LocalAssetStore("public")
    data = store.read("/uploads/items/a.webp")

    staged = StagedAssets.create()
    staged.write("uploads/items/a.webp", data)
    staged.commit(store)
"""

import logging
import shutil
import tempfile
from pathlib import Path, PurePosixPath

from inventory_snapshot.errors import UnsafeArchiveEntry

logger = logging.getLogger(__name__)

_REMOTE_PREFIXES = ("http://", "https://", "data:", "blob:", "//")


def is_local_reference(ref: str | None) -> bool:
    """True when ``ref`` points at a file this system stores itself."""
    if not ref or not ref.strip():
        return False
    return not ref.strip().lower().startswith(_REMOTE_PREFIXES)


def entry_name(ref: str) -> str:
    """Archive entry name for a local asset reference."""
    return ref.strip().lstrip("/")


def safe_relative_path(name: str) -> PurePosixPath:
    """Validate an archive entry name and return it as a relative path.

    Raises:
        UnsafeArchiveEntry: For absolute paths, drive letters, backslashes
            or any ``..`` component.
    """
    if not name or "\x00" in name or "\\" in name:
        raise UnsafeArchiveEntry(f"Disallowed archive entry name: {name!r}")
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts or ":" in path.parts[0]:
        raise UnsafeArchiveEntry(f"Archive entry escapes staging directory: {name!r}")
    return path


def _resolve_inside(root: Path, relative: PurePosixPath) -> Path:
    target = (root / relative).resolve()
    if not target.is_relative_to(root.resolve()):
        raise UnsafeArchiveEntry(f"Path escapes {root}: {relative}")
    return target


class LocalAssetStore:
    """Filesystem-backed live asset store rooted at ``root``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, ref: str) -> Path:
        """Absolute path of a local reference inside the store."""
        return _resolve_inside(self.root, safe_relative_path(entry_name(ref)))

    def exists(self, ref: str) -> bool:
        return self.path_for(ref).is_file()

    def read(self, ref: str) -> bytes:
        return self.path_for(ref).read_bytes()

    def write(self, ref: str, data: bytes) -> Path:
        target = self.path_for(ref)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return target


class StagedAssets:
    """Private staging directory holding unpacked assets of one restore.

    Files are only moved into the live store by ``commit()``; ``discard()``
    removes the directory and everything in it.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.entries: list[str] = []

    @classmethod
    def create(cls, parent: str | Path | None = None) -> "StagedAssets":
        if parent is not None:
            Path(parent).mkdir(parents=True, exist_ok=True)
        return cls(Path(tempfile.mkdtemp(prefix="snapshot-stage-", dir=parent)))

    def __len__(self) -> int:
        return len(self.entries)

    def write(self, name: str, data: bytes) -> Path:
        """Write one entry below the staging root."""
        target = _resolve_inside(self.root, safe_relative_path(name))
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        self.entries.append(name)
        return target

    def commit(self, store: LocalAssetStore) -> int:
        """Move every staged file into the live store and clean up.

        Files replaced in the live store are set aside first; if any move
        fails, files already moved are taken back out and the originals
        restored before the error propagates.
        """
        replaced_dir = Path(tempfile.mkdtemp(prefix="snapshot-replaced-"))
        moved: list[tuple[Path, Path | None]] = []
        try:
            for index, name in enumerate(self.entries):
                source = _resolve_inside(self.root, safe_relative_path(name))
                target = store.path_for(name)
                target.parent.mkdir(parents=True, exist_ok=True)
                backup = None
                if target.exists():
                    backup = replaced_dir / str(index)
                    shutil.move(str(target), str(backup))
                moved.append((target, backup))
                shutil.move(str(source), str(target))
        except BaseException:
            for target, backup in reversed(moved):
                target.unlink(missing_ok=True)
                if backup is not None:
                    shutil.move(str(backup), str(target))
            raise
        finally:
            shutil.rmtree(replaced_dir, ignore_errors=True)

        count = len(self.entries)
        logger.info("Committed %d staged assets into %s", count, store.root)
        self.discard()
        return count

    def discard(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root, ignore_errors=True)
            logger.debug("Discarded staging directory %s", self.root)
