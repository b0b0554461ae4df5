"""
Local document store.

The vault is a plain folder of Markdown files. All paths handed to the
store are POSIX-style and relative to the vault root. Writes are atomic
(temp file + rename) and deletions move files into a ``.trash`` folder
inside the vault instead of unlinking them.
"""

import logging
import shutil
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import Any

from .exceptions import (
    DocumentReadError,
    DocumentTrashError,
    DocumentWriteError,
    InvalidPathError,
)
from .frontmatter import parse_document, parse_header, read_header_lines
from .models import LocalDocument

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIX = ".md"


class DocumentStore:
    """
    Filesystem-backed document store rooted at a vault folder.

    The store performs no locking; concurrent edits by other programs
    during a sync pass are not guarded against.
    """

    TRASH_FOLDER = ".trash"

    def __init__(self, root: Path | str) -> None:
        """
        Initialize the store.

        Args:
            root: Vault root folder (created on first write if missing)
        """
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        """Map a vault-relative path to a filesystem path inside the vault."""
        relative = PurePosixPath(path.strip("/")) if path else PurePosixPath(".")
        if relative.is_absolute() or ".." in relative.parts:
            raise InvalidPathError(path)
        resolved = (self.root / relative).resolve()
        root = self.root.resolve()
        if resolved != root and root not in resolved.parents:
            raise InvalidPathError(path)
        return resolved

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def is_folder(self, path: str) -> bool:
        return self._resolve(path).is_dir()

    def read(self, path: str) -> str:
        """
        Read a document.

        Raises:
            DocumentReadError: If the file cannot be read
        """
        target = self._resolve(path)
        try:
            return target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise DocumentReadError(path, str(e)) from e

    def load_document(self, path: str) -> LocalDocument:
        """Read and parse a document."""
        return parse_document(path, self.read(path))

    def read_frontmatter(self, path: str) -> dict[str, Any]:
        """
        Read only the frontmatter of a document.

        Raises:
            DocumentReadError: If the file cannot be read
        """
        target = self._resolve(path)
        try:
            with target.open("r", encoding="utf-8") as f:
                header = read_header_lines(f)
        except (OSError, UnicodeDecodeError) as e:
            raise DocumentReadError(path, str(e)) from e
        return parse_header(header, path)

    def write(self, path: str, content: str) -> None:
        """
        Write a document atomically, creating parent folders.

        Raises:
            DocumentWriteError: If the write fails
        """
        target = self._resolve(path)
        temp_path = target.with_suffix(target.suffix + ".tmp")

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(content, encoding="utf-8")
            temp_path.replace(target)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise DocumentWriteError(path, str(e)) from e

        logger.debug(f"Wrote {path}")

    def create(self, path: str, content: str) -> None:
        """
        Create a new document.

        Raises:
            DocumentWriteError: If the document already exists or the write fails
        """
        if self._resolve(path).exists():
            raise DocumentWriteError(path, "file already exists")
        self.write(path, content)

    def trash(self, path: str) -> str:
        """
        Move a document into the vault trash.

        Returns:
            Vault-relative path of the trashed file

        Raises:
            DocumentTrashError: If the move fails
        """
        source = self._resolve(path)
        relative = PurePosixPath(path.strip("/"))
        destination = PurePosixPath(self.TRASH_FOLDER) / relative
        target = self._resolve(str(destination))

        if target.exists():
            stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%f")
            destination = destination.with_name(f"{destination.stem} {stamp}{destination.suffix}")
            target = self._resolve(str(destination))

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(target))
        except OSError as e:
            raise DocumentTrashError(path, str(e)) from e

        logger.debug(f"Moved {path} to {destination}")
        return str(destination)

    def ensure_folder(self, path: str) -> None:
        """
        Create a folder (and its parents) if missing.

        Raises:
            DocumentWriteError: If the folder cannot be created
        """
        target = self._resolve(path)
        if target.is_dir():
            return
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DocumentWriteError(path, str(e)) from e
        logger.debug(f"Created folder: {path}")

    def list_documents(self, folder: str) -> list[str]:
        """List Markdown documents directly inside a folder (sorted)."""
        target = self._resolve(folder)
        if not target.is_dir():
            return []
        prefix = PurePosixPath(folder.strip("/"))
        return sorted(
            str(prefix / entry.name)
            for entry in target.iterdir()
            if entry.is_file() and entry.suffix == DOCUMENT_SUFFIX
        )

    def is_folder_empty(self, folder: str) -> bool:
        target = self._resolve(folder)
        return target.is_dir() and not any(target.iterdir())

    def remove_folder(self, folder: str) -> bool:
        """
        Remove a folder if it is empty.

        Returns:
            True if the folder was removed
        """
        if not self.is_folder_empty(folder):
            return False
        target = self._resolve(folder)
        try:
            target.rmdir()
        except OSError as e:
            logger.warning(f"Could not remove folder {folder}: {e}")
            return False
        logger.debug(f"Removed empty folder: {folder}")
        return True
