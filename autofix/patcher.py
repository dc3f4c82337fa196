"""
Patch Applier Module for Autofix
================================

This module applies a single search/replace fix to a source file with an
atomicity contract:

1. Read the full content of the target
2. If the search fragment is absent, do nothing (``applied=False``)
3. Write the original content to a backup and verify it by reading it back
4. Replace the first occurrence of the fragment
5. Write the new content through a temporary file and ``os.replace``

The target is never modified without a verified backup. Backups are
numbered (``file.bak``, ``file.bak.1``, ...) so an earlier backup is never
overwritten, and they are never deleted automatically.

Concurrency:
------------
Calls for the same file within one process are serialized by a per-path
lock keyed on the resolved path. Separate processes patching the same
file are not coordinated; the last writer wins.
"""

import logging
import os
import shutil
import tempfile
import threading
from dataclasses import dataclass
from difflib import unified_diff
from pathlib import Path
from typing import Dict, Optional, Any


logger = logging.getLogger(__name__)


class PatchError(Exception):
    """Raised when a backup or the final write cannot be completed."""

    def __init__(self, message: str, backup_path: Optional[str] = None):
        super().__init__(message)
        self.backup_path = backup_path


@dataclass
class PatchRecord:
    """Outcome of one patch attempt."""
    target_file: str
    search_fragment: str
    replacement_fragment: str
    backup_path: Optional[str] = None  # Set whenever applied is True
    applied: bool = False
    diff: Optional[str] = None         # Unified diff of the change

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary for JSON serialization."""
        return {
            "target_file": self.target_file,
            "search_fragment": self.search_fragment,
            "replacement_fragment": self.replacement_fragment,
            "backup_path": self.backup_path,
            "applied": self.applied,
            "diff": self.diff,
        }


class FileStore:
    """UTF-8 file access that preserves line endings and writes atomically."""

    def read(self, path: str) -> str:
        with open(path, 'r', encoding='utf-8', newline='') as f:
            return f.read()

    def write(self, path: str, content: str) -> int:
        """
        Write ``content`` to ``path`` via a temporary file in the same directory.

        Returns:
            Number of bytes written
        """
        directory = os.path.dirname(os.path.abspath(path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".autofix_", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8', newline='') as tmp:
                tmp.write(content)
            if os.path.exists(path):
                shutil.copymode(path, tmp_path)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        return len(content.encode('utf-8'))


_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: str) -> threading.Lock:
    key = os.path.realpath(path)
    with _locks_guard:
        if key not in _locks:
            _locks[key] = threading.Lock()
        return _locks[key]


class PatchApplier:
    """
    Applies search/replace fixes with backup and rollback.

    Usage:
        applier = PatchApplier()
        record = applier.apply("broken.js", "const x = ;", "const x = null;")
        if record.applied:
            applier.rollback(record)
    """

    def __init__(self, files: Optional[FileStore] = None, backup_dir: Optional[str] = None):
        """
        Initialize the patch applier.

        Args:
            files: File I/O collaborator (uses FileStore if None)
            backup_dir: Directory for backups (beside the target if None)
        """
        self.files = files or FileStore()
        self.backup_dir = Path(backup_dir) if backup_dir else None

    def _backup_path(self, target_file: str) -> str:
        """Next unused backup path for ``target_file``."""
        if self.backup_dir:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            base = str(self.backup_dir / Path(target_file).name)
        else:
            base = target_file

        candidate = f"{base}.bak"
        counter = 1
        while os.path.exists(candidate):
            candidate = f"{base}.bak.{counter}"
            counter += 1
        return candidate

    def apply(self, target_file: str, search_fragment: str, replacement_fragment: str) -> PatchRecord:
        """
        Replace the first occurrence of a fragment in a file.

        Args:
            target_file: File to patch
            search_fragment: Text to find
            replacement_fragment: Text to put in its place

        Returns:
            PatchRecord; ``applied`` is False if the fragment was not found

        Raises:
            PatchError: If the file cannot be read, the backup cannot be
                written and verified, or the final write fails
        """
        record = PatchRecord(
            target_file=target_file,
            search_fragment=search_fragment,
            replacement_fragment=replacement_fragment
        )

        with _lock_for(target_file):
            try:
                original = self.files.read(target_file)
            except (OSError, UnicodeDecodeError) as e:
                raise PatchError(f"Cannot read {target_file}: {e}") from e

            if not search_fragment or search_fragment not in original:
                logger.debug(f"Fragment not found in {target_file}; nothing to patch")
                return record

            backup_path = self._backup_path(target_file)
            try:
                self.files.write(backup_path, original)
                verified = self.files.read(backup_path) == original
            except (OSError, UnicodeDecodeError) as e:
                raise PatchError(f"Backup of {target_file} failed: {e}") from e
            if not verified:
                raise PatchError(f"Backup of {target_file} could not be verified at {backup_path}")

            modified = original.replace(search_fragment, replacement_fragment, 1)
            try:
                self.files.write(target_file, modified)
            except OSError as e:
                raise PatchError(
                    f"Writing {target_file} failed: {e}. Original content kept at {backup_path}",
                    backup_path=backup_path
                ) from e

        record.backup_path = backup_path
        record.applied = True
        record.diff = self._generate_diff(original, modified, target_file)
        logger.debug(f"Patched {target_file} (backup: {backup_path})")
        return record

    def rollback(self, record: PatchRecord) -> bool:
        """
        Restore a patched file from its backup.

        Args:
            record: The record returned by ``apply``

        Returns:
            True if the file was restored
        """
        if not record.applied or not record.backup_path:
            return False

        with _lock_for(record.target_file):
            try:
                content = self.files.read(record.backup_path)
                self.files.write(record.target_file, content)
            except OSError as e:
                logger.error(f"Rollback of {record.target_file} failed: {e}")
                return False
        return True

    def _generate_diff(self, original: str, modified: str, file_path: str) -> str:
        """Generate a unified diff between original and modified code."""
        diff = unified_diff(
            original.splitlines(keepends=True),
            modified.splitlines(keepends=True),
            fromfile=f"a/{file_path}",
            tofile=f"b/{file_path}"
        )
        return ''.join(diff)
