# build_engine/distribution/locks.py

import threading
from typing import Dict


class TenantLocks:
    """In-process mutual exclusion per tenant. Does not span processes."""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def __call__(self, tenant_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(tenant_id)
            if lock is None:
                lock = self._locks[tenant_id] = threading.Lock()
            return lock
