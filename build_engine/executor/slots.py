#build_engine\executor\slots.py

"""Fixed-size worker pool bookkeeping: one build job per slot."""

import threading
from typing import List, Optional


class Slot:
    """One worker position. Holds at most one job."""

    def __init__(self, slot_id: int):
        self.slot_id = slot_id
        self.job_id: Optional[str] = None

    def is_free(self) -> bool:
        return self.job_id is None

    def bind(self, job_id: str) -> None:
        if not self.is_free():
            raise ValueError(f"Slot {self.slot_id} already running job {self.job_id}")
        self.job_id = job_id

    def release(self) -> None:
        self.job_id = None

    def __repr__(self) -> str:
        status = "free" if self.is_free() else f"busy({self.job_id})"
        return f"<Slot(id={self.slot_id}, {status})>"


class SlotManager:
    """
    Tracks which slots are busy.

    Slots are reserved by the polling thread and released by job threads,
    so reservation and release go through one lock.
    """

    def __init__(self, max_slots: int):
        if max_slots < 1:
            raise ValueError("max_slots must be at least 1")

        self._slots = [Slot(i) for i in range(max_slots)]
        self._lock = threading.Lock()

    def reserve(self, job_id: str) -> Optional[Slot]:
        """Bind job_id to the first free slot. None when the pool is full."""
        with self._lock:
            for slot in self._slots:
                if slot.is_free():
                    slot.bind(job_id)
                    return slot
        return None

    def release(self, job_id: str) -> bool:
        with self._lock:
            for slot in self._slots:
                if slot.job_id == job_id:
                    slot.release()
                    return True
        return False

    def has_free_slot(self) -> bool:
        with self._lock:
            return any(s.is_free() for s in self._slots)

    def busy_jobs(self) -> List[str]:
        with self._lock:
            return [s.job_id for s in self._slots if not s.is_free()]

    def total_slots(self) -> int:
        return len(self._slots)

    def free_slots(self) -> int:
        with self._lock:
            return sum(1 for s in self._slots if s.is_free())

    def __repr__(self) -> str:
        return (
            f"<SlotManager(total={self.total_slots()}, "
            f"free={self.free_slots()})>"
        )
