"""
Snapshot Persistence - Durable copy of the org schema.

The snapshot file lets a restarted process serve the org schema without
waiting for the executor. File format:

    {"schema": {"standard": [...], "custom": [...]}, "timestamp": <epoch-ms>}

A file that is missing, unreadable, malformed or older than the TTL is
treated as absent. Writes go to a temporary file in the same directory and
are moved into place with os.replace, so readers never see a partial
document. Several processes may share the path; the last writer wins.
"""
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from schema_gateway.cache.store import Clock, epoch_ms
from schema_gateway.core.exceptions import PersistenceFailure, RecordShapeError
from schema_gateway.core.logging_config import LoggerMixin
from schema_gateway.models.schema import SchemaSnapshot


class SnapshotPersistence(LoggerMixin):
    """
    Loads and saves the org schema snapshot.

    All failures are logged and swallowed: the cache keeps working from
    memory and the executor when the disk is unavailable.
    """

    def __init__(
        self,
        path: Path,
        ttl_ms: int,
        enabled: bool = True,
        clock: Optional[Clock] = None,
    ):
        self.path = Path(path)
        self.ttl_ms = ttl_ms
        self.enabled = enabled
        self._clock = clock or epoch_ms
        # Saves may overlap when a refresh finishes during a slow write
        self._lock = threading.RLock()
        self._saved_timestamp: Optional[int] = None
        self.logger.info(
            f"SnapshotPersistence initialized: path={self.path}, "
            f"ttl={ttl_ms}ms, enabled={enabled}"
        )

    def load(self) -> Optional[SchemaSnapshot]:
        """
        Read the snapshot if it exists and is still within TTL.

        Returns:
            The snapshot with fetched_at set to the stored timestamp, or None
        """
        if not self.enabled:
            return None

        try:
            document = self._read()
        except FileNotFoundError:
            self.logger.info("No snapshot file found, will fetch fresh")
            return None
        except PersistenceFailure as e:
            self.logger.warning(f"Ignoring snapshot file: {e.message} ({e.details})")
            return None

        timestamp = document.get("timestamp")
        if isinstance(timestamp, bool) or not isinstance(timestamp, int):
            self.logger.warning(f"Ignoring snapshot file without a valid timestamp: {self.path}")
            return None

        age = self._clock() - timestamp
        if age >= self.ttl_ms:
            self.logger.info(f"Snapshot on disk expired (age={age}ms), will refresh")
            return None

        try:
            snapshot = SchemaSnapshot.from_body(document.get("schema"), fetched_at=timestamp)
        except RecordShapeError as e:
            self.logger.warning(f"Ignoring snapshot file with invalid schema: {e.message}")
            return None

        self.logger.info(
            f"Loaded schema snapshot from disk: {len(snapshot.standard)} standard, "
            f"{len(snapshot.custom)} custom (age={age}ms)"
        )
        return snapshot

    def save(self, snapshot: SchemaSnapshot, timestamp: Optional[int] = None) -> bool:
        """
        Atomically replace the snapshot file.

        Args:
            snapshot: Snapshot to persist
            timestamp: Stored timestamp, defaults to snapshot.fetched_at

        Returns:
            True if the file was written
        """
        if not self.enabled:
            return False
        if snapshot.degraded:
            self.logger.debug("Not persisting degraded fallback snapshot")
            return False

        stamp = snapshot.fetched_at if timestamp is None else timestamp
        document = {"schema": snapshot.body(), "timestamp": stamp}
        with self._lock:
            if self._saved_timestamp is not None and stamp < self._saved_timestamp:
                self.logger.debug(
                    f"Not replacing snapshot from {self._saved_timestamp} with older {stamp}"
                )
                return False
            try:
                self._write(document)
            except PersistenceFailure as e:
                self.logger.error(f"Failed to save snapshot: {e.message} ({e.details})")
                return False
            self._saved_timestamp = stamp

        self.logger.info(f"Saved schema snapshot to disk: {self.path}")
        return True

    def delete(self) -> bool:
        """Remove the snapshot file. Returns False if there was nothing to remove."""
        with self._lock:
            self._saved_timestamp = None
            try:
                self.path.unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                self.logger.error(f"Failed to delete snapshot {self.path}: {e}")
                return False
        self.logger.info(f"Deleted schema snapshot: {self.path}")
        return True

    def _read(self) -> dict:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise
        except OSError as e:
            raise PersistenceFailure("Could not read snapshot file", details=str(e))
        except UnicodeDecodeError as e:
            raise PersistenceFailure("Snapshot file is not valid UTF-8", details=str(e))

        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise PersistenceFailure("Snapshot file is not valid JSON", details=str(e))

        if not isinstance(document, dict):
            raise PersistenceFailure("Snapshot file is not a JSON object")
        return document

    def _write(self, document: dict) -> None:
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceFailure("Could not write snapshot file", details=str(e))
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
