"""
In-memory registry of running classification jobs.

Enforces one active run per job id within the process and keeps the round
events of each run so WebSocket clients can follow along. Durable state lives
in the checkpoint store; this registry only knows what this process is doing.

Finished runs stay replayable until more than `max_finished` newer runs have
finished; the oldest are then dropped. Active runs are never evicted.
"""

from typing import Any, Dict, List, Optional
import threading

from config import config


class ActiveJobRegistry:
    """Thread-safe single-flight guard and round-event log."""

    def __init__(self, max_finished: int = config.FINISHED_RUNS_RETAINED) -> None:
        # Insertion order is acquisition order; re-acquired jobs move to the end
        self._store: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.max_finished = max_finished

    def try_acquire(self, job_id: str) -> bool:
        """Mark a job as running. Returns False if it already is."""
        with self._lock:
            entry = self._store.pop(job_id, None)
            if entry is not None and entry["active"]:
                self._store[job_id] = entry
                return False
            self._store[job_id] = {
                "job_id": job_id,
                "status": "in_progress",
                "active": True,
                "events": [],
            }
            return True

    def release(self, job_id: str, status: Optional[str] = None) -> None:
        with self._lock:
            entry = self._store.get(job_id)
            if entry is None:
                return
            entry["active"] = False
            if status is not None:
                entry["status"] = status
            self._evict_finished()

    def _evict_finished(self) -> None:
        finished = [job_id for job_id, entry in self._store.items() if not entry["active"]]
        for job_id in finished[:max(0, len(finished) - self.max_finished)]:
            del self._store[job_id]

    def is_active(self, job_id: str) -> bool:
        with self._lock:
            entry = self._store.get(job_id)
            return bool(entry and entry["active"])

    def record_event(self, job_id: str, event: Dict[str, Any]) -> None:
        with self._lock:
            entry = self._store.get(job_id)
            if entry is not None:
                entry["events"].append(dict(event))

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        """A snapshot of the job's entry; callers may not mutate the registry through it."""
        with self._lock:
            entry = self._store.get(job_id)
            if entry is None:
                return None
            return {**entry, "events": list(entry["events"])}

    def events_since(self, job_id: str, index: int) -> List[Dict[str, Any]]:
        with self._lock:
            entry = self._store.get(job_id)
            if entry is None:
                return []
            return list(entry["events"][index:])


# Singleton instance shared across the application
job_registry = ActiveJobRegistry()
