import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from ledger.errors import NotFoundError, PersistenceError

logger = logging.getLogger(__name__)

IDENTITY_FILENAME = "database.csv"
ATTENDANCE_FILENAME = "attendance_records.csv"
RECOMMENDED_FOLDER_NAME = "data"


class PersistenceGateway(Protocol):
    """Named byte blobs in one storage target.

    ``write_named`` overwrites the whole blob every time.
    """

    def read_named(self, name: str) -> bytes: ...

    def write_named(self, name: str, data: bytes) -> None: ...


class DirectoryGateway:
    """Stores each named blob as a file inside ``root``."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"DirectoryGateway({str(self.root)!r})"

    def _path(self, name: str) -> Path:
        if not name or Path(name).name != name:
            raise PersistenceError(f"Invalid file name: {name!r}")
        return self.root / name

    def check(self) -> None:
        if not self.root.is_dir():
            raise PersistenceError(f"Storage folder not found: {self.root}")
        if not os.access(self.root, os.W_OK):
            raise PersistenceError(f"Storage folder is not writable: {self.root}")

    def read_named(self, name: str) -> bytes:
        path = self._path(name)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"{name} not found in {self.root}") from None
        except OSError as e:
            raise PersistenceError(f"Could not read {path}: {e}") from e

    def write_named(self, name: str, data: bytes) -> None:
        path = self._path(name)
        tmp_name = None
        try:
            # Write beside the target then swap, so a failed write never
            # leaves a half-written file behind.
            fd, tmp_name = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=self.root)
            with os.fdopen(fd, "wb") as out_file:
                out_file.write(data)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise PersistenceError(f"Could not write {path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug("Could not remove temp file %s", tmp_name)
