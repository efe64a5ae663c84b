"""Local persistence of the last provisioning record."""
import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from ..deploy.errors import RecordCorrupted, StoreLocked
from ..deploy.models import ProvisioningRecord

logger = logging.getLogger(__name__)

DEFAULT_RECORD_PATH = "provisioning-record.json"


class ResultStore:
    """Single JSON file holding the last ProvisioningRecord.

    The file is process-local state; `lock()` gives an advisory guard for
    overlapping invocations in the same directory.
    """

    def __init__(self, path: Union[str, Path] = DEFAULT_RECORD_PATH):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")

    def load(self) -> Optional[ProvisioningRecord]:
        """Read the record, or None if no record has been written.

        Raises:
            RecordCorrupted: If the file exists but does not hold a record.
        """
        if not self.path.exists():
            return None

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return ProvisioningRecord.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise RecordCorrupted(f"Record file {self.path} is not readable", str(e)) from e

    def save(self, record: ProvisioningRecord) -> None:
        """Write the record atomically: temp file, fsync, then rename over the old one."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_name(self.path.name + ".tmp")
        payload = json.dumps(record.to_dict(), indent=2, sort_keys=True) + "\n"

        with open(temp_file, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        temp_file.replace(self.path)
        logger.debug("Saved provisioning record to %s", self.path)

    def clear(self) -> None:
        """Delete the record; a missing file is not an error."""
        try:
            self.path.unlink()
            logger.debug("Removed provisioning record %s", self.path)
        except FileNotFoundError:
            pass

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Hold an exclusive lock file for the duration of the block.

        A lock left by a process that no longer exists is taken over. A lock
        file without a readable pid is treated as held.

        Raises:
            StoreLocked: If another running process holds the lock.
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        if not self._try_acquire():
            owner = self._lock_owner()
            if owner is None:
                raise StoreLocked(
                    f"{self.path} is in use", f"{self.lock_path} names no owner; remove it if no run is active"
                )
            if _pid_alive(owner):
                raise StoreLocked(f"{self.path} is in use", f"held by pid {owner}")
            logger.warning("Taking over stale lock %s of pid %d", self.lock_path, owner)
            self.lock_path.unlink(missing_ok=True)
            if not self._try_acquire():
                raise StoreLocked(f"{self.path} is in use", "lock was re-acquired concurrently")
        try:
            yield
        finally:
            self.lock_path.unlink(missing_ok=True)

    def _try_acquire(self) -> bool:
        # The pid is written before the lock file appears, so it is never seen empty
        pending = self.lock_path.with_name(f"{self.lock_path.name}.{os.getpid()}")
        pending.write_text(str(os.getpid()))
        try:
            os.link(pending, self.lock_path)
        except FileExistsError:
            return False
        finally:
            pending.unlink(missing_ok=True)
        return True

    def _lock_owner(self) -> Optional[int]:
        try:
            return int(self.lock_path.read_text().strip())
        except (OSError, ValueError):
            return None


def _pid_alive(pid: int) -> bool:
    # os.kill terminates the target on Windows, so never signal it there
    if os.name == "nt":
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
