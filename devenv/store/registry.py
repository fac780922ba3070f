"""
Environment registry with JSONL persistence, file locking, and atomic updates.
"""

import json
import fcntl
import threading
from pathlib import Path
from typing import Dict, List, Optional, Any

from devenv.core.models import EnvironmentRecord, utc_now
from devenv.core.exceptions import (
    AlreadyExistsError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
)


class EnvironmentRegistry:
    """Thread- and process-safe JSONL registry of environment records.

    Every read-modify-write cycle runs under an in-process RLock plus an
    exclusive flock on the registry file, so the name uniqueness check and
    the insert are one atomic step even across separate envctl processes.
    """

    def __init__(self, registry_file: str):
        """
        Initialize the registry.

        Args:
            registry_file: Path to JSONL file for environment records
                (created if missing).
        """
        self.registry_file = Path(registry_file).expanduser()
        self._lock = threading.RLock()
        self._file_lock_handle = None

        # Ensure directory exists
        self.registry_file.parent.mkdir(parents=True, exist_ok=True)

        # Create empty file if missing
        if not self.registry_file.exists():
            self.registry_file.touch()

    def _acquire_file_lock(self) -> None:
        """Acquire exclusive file lock."""
        if self._file_lock_handle is not None:
            return  # Already locked

        lock_path = self.registry_file.with_suffix(".lock")
        self._file_lock_handle = open(lock_path, "a+")
        fcntl.flock(self._file_lock_handle.fileno(), fcntl.LOCK_EX)

    def _release_file_lock(self) -> None:
        """Release file lock."""
        if self._file_lock_handle is not None:
            fcntl.flock(self._file_lock_handle.fileno(), fcntl.LOCK_UN)
            self._file_lock_handle.close()
            self._file_lock_handle = None

    def _read_all_records(self) -> List[EnvironmentRecord]:
        """Read all records from JSONL file (must be called within lock context)."""
        records = []
        if not self.registry_file.exists() or self.registry_file.stat().st_size == 0:
            return records

        try:
            with open(self.registry_file, "r") as f:
                for line in f:
                    line = line.strip()
                    if line:
                        records.append(EnvironmentRecord.from_dict(json.loads(line)))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise ValueError(f"Error reading registry file {self.registry_file}: {e}")

        return records

    def _write_all_records(self, records: List[EnvironmentRecord]) -> None:
        """Write all records atomically (must be called within lock context)."""
        for record in records:
            record.validate()

        names = [r.name for r in records]
        if len(names) != len(set(names)):
            raise ValueError("Refusing to write duplicate environment names")

        # Write to temporary file first, then atomically rename
        temp_file = self.registry_file.with_suffix(".jsonl.tmp")
        try:
            with open(temp_file, "w") as f:
                for record in records:
                    f.write(json.dumps(record.to_dict(), default=str) + "\n")
            temp_file.replace(self.registry_file)
        except Exception:
            if temp_file.exists():
                temp_file.unlink()
            raise

    def insert(self, record: EnvironmentRecord) -> EnvironmentRecord:
        """
        Insert a record if no record with the same name exists.

        Args:
            record: EnvironmentRecord to add

        Returns:
            The stored record.

        Raises:
            AlreadyExistsError: If the name or id is already present.
            ValueError: If the record is invalid.
        """
        record.validate()

        with self._lock:
            self._acquire_file_lock()
            try:
                records = self._read_all_records()

                for existing in records:
                    if existing.name == record.name:
                        raise AlreadyExistsError(
                            f"environment '{record.name}' already exists "
                            f"(status={existing.status})",
                            environment=record.name,
                            operation="insert",
                        )
                    if existing.id == record.id:
                        raise AlreadyExistsError(
                            f"record id '{record.id}' already exists",
                            environment=record.name,
                            operation="insert",
                        )

                records.append(record)
                self._write_all_records(records)
                return record
            finally:
                self._release_file_lock()

    def update(
        self,
        name: str,
        updates: Dict[str, Any],
        expected_status: Optional[str] = None,
        expected_updated_at: Optional[str] = None,
    ) -> EnvironmentRecord:
        """
        Update an existing record under an optimistic guard.

        Args:
            name: Environment name of record to update
            updates: Dictionary of fields to update
            expected_status: If given, the stored status must still match.
            expected_updated_at: If given, the stored updated_at must still match.

        Returns:
            Updated EnvironmentRecord

        Raises:
            NotFoundError: If no record with this name exists.
            ConflictError: If the guard does not match (stale writer).
            InvalidTransitionError: If the status transition is illegal.
        """
        with self._lock:
            self._acquire_file_lock()
            try:
                records = self._read_all_records()
                record_idx = None

                for idx, r in enumerate(records):
                    if r.name == name:
                        record_idx = idx
                        break

                if record_idx is None:
                    raise NotFoundError(
                        f"environment '{name}' not found",
                        environment=name,
                        operation="update",
                    )

                current = records[record_idx]
                if expected_status is not None and current.status != expected_status:
                    raise ConflictError(
                        f"stale update: expected status '{expected_status}', "
                        f"found '{current.status}'",
                        environment=name,
                        operation="update",
                    )
                if (
                    expected_updated_at is not None
                    and current.updated_at != expected_updated_at
                ):
                    raise ConflictError(
                        "stale update: record was modified concurrently",
                        environment=name,
                        operation="update",
                    )

                record_dict = current.to_dict()
                old_status = record_dict["status"]
                record_dict.update(updates)

                if "status" in updates:
                    new_status = updates["status"]
                    if new_status != old_status and not EnvironmentRecord.is_valid_transition(
                        old_status, new_status
                    ):
                        raise InvalidTransitionError(
                            f"Invalid status transition: {old_status} -> {new_status}",
                            environment=name,
                            operation="update",
                        )

                if "worktree_path" in updates and current.worktree_path and (
                    updates["worktree_path"] != current.worktree_path
                ):
                    raise ConflictError(
                        "worktree_path cannot change once set",
                        environment=name,
                        operation="update",
                    )

                record_dict["updated_at"] = utc_now()

                updated_record = EnvironmentRecord.from_dict(record_dict)
                updated_record.validate()

                records[record_idx] = updated_record
                self._write_all_records(records)

                return updated_record
            finally:
                self._release_file_lock()

    def delete(self, name: str) -> bool:
        """
        Delete a record by name.

        Returns:
            True if a record was removed, False if none existed.
        """
        with self._lock:
            self._acquire_file_lock()
            try:
                records = self._read_all_records()
                remaining = [r for r in records if r.name != name]

                if len(remaining) == len(records):
                    return False

                self._write_all_records(remaining)
                return True
            finally:
                self._release_file_lock()

    def get(self, name: str) -> Optional[EnvironmentRecord]:
        """
        Get a record by environment name.

        Returns:
            EnvironmentRecord if found, None otherwise
        """
        with self._lock:
            self._acquire_file_lock()
            try:
                for r in self._read_all_records():
                    if r.name == name:
                        return r
                return None
            finally:
                self._release_file_lock()

    def get_by_id(self, record_id: str) -> Optional[EnvironmentRecord]:
        """Get a record by its opaque id."""
        with self._lock:
            self._acquire_file_lock()
            try:
                for r in self._read_all_records():
                    if r.id == record_id:
                        return r
                return None
            finally:
                self._release_file_lock()

    def list(self, status: Optional[str] = None) -> List[EnvironmentRecord]:
        """
        List records, optionally filtered by status.

        Args:
            status: Status to filter by (None for all)

        Returns:
            Records sorted by name.
        """
        with self._lock:
            self._acquire_file_lock()
            try:
                records = self._read_all_records()
            finally:
                self._release_file_lock()

        if status is not None:
            records = [r for r in records if r.status == status]
        return sorted(records, key=lambda r: r.name)

    def clear(self) -> None:
        """Clear all records (useful for testing)."""
        with self._lock:
            self._acquire_file_lock()
            try:
                self._write_all_records([])
            finally:
                self._release_file_lock()
