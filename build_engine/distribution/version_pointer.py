# build_engine/distribution/version_pointer.py
"""
Tenant -> live version indirection.

The logical pointer is a small JSON object at ``pointers/{tenant}/current.json``.
Because the edge router cannot look anything up, the live version's files are
also mirrored into ``tenants/{tenant}/deployments/current/``. The mirror is
copied file by file and files the new version lacks are removed afterwards, so
a request served mid-update can see a mix of the old and new version. The
pointer is written after the mirror.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from build_engine.core.clients import ObjectStore
from build_engine.core.errors import BuildEngineError, ObjectNotFound, VersionPointerError
from build_engine.core.models import VersionPointer, utcnow
from build_engine.distribution.backends import current_prefix
from build_engine.pipeline.uploader import deployment_prefix

logger = logging.getLogger(__name__)


def pointer_key(tenant_id: str) -> str:
    return f"pointers/{tenant_id}/current.json"


class VersionPointerManager:
    def __init__(
        self,
        store: ObjectStore,
        bucket: str,
        *,
        copy_width: int = 10,
        failure_threshold: float = 0.1,
    ):
        self.store = store
        self.bucket = bucket
        self.copy_width = copy_width
        self.failure_threshold = failure_threshold

    def update_version_pointer(self, tenant_id: str, version: str) -> VersionPointer:
        """
        Mirror ``version`` into the current path, then write the pointer.

        Raises:
            VersionPointerError: no artifacts, listing failed, too many copy or delete
                failures, or the pointer could not be written
        """
        source = deployment_prefix(tenant_id, version)
        target = current_prefix(tenant_id) + "/"

        try:
            objects = self.store.list(self.bucket, source)
        except BuildEngineError as e:
            raise VersionPointerError(f"Cannot list artifacts of {version}: {e}") from e

        if not objects:
            raise VersionPointerError(f"No artifacts found for version {version} of tenant {tenant_id}")

        keys = [obj.key for obj in objects]
        logger.info(f"[pointer] Mirroring {len(keys)} files of {version} to {target}")

        failed: List[str] = []
        with ThreadPoolExecutor(max_workers=self.copy_width) as pool:
            for start in range(0, len(keys), self.copy_width):
                batch = keys[start:start + self.copy_width]
                for key, error in zip(batch, pool.map(lambda k: self._copy(k, source, target), batch)):
                    if error:
                        failed.append(key)

        stale = self._stale_keys(keys, source, target)
        if stale:
            logger.info(f"[pointer] Removing {len(stale)} files no longer in {version}")
            failed.extend(self._delete(stale))

        total = len(keys) + len(stale)
        rate = len(failed) / total
        if failed and rate >= self.failure_threshold:
            raise VersionPointerError(
                f"Mirror update failed for {len(failed)}/{total} files of {version}"
            )
        if failed:
            logger.warning(f"[pointer] {len(failed)}/{total} mirror operations failed, under threshold")

        pointer = VersionPointer(
            tenant_id=tenant_id,
            version=version,
            timestamp=utcnow(),
            path=source,
        )

        try:
            self.store.put(
                self.bucket,
                pointer_key(tenant_id),
                json.dumps(pointer.to_dict(), indent=2).encode("utf-8"),
                "application/json",
            )
        except BuildEngineError as e:
            raise VersionPointerError(f"Cannot write version pointer: {e}") from e

        logger.info(f"[pointer] ✅ Tenant {tenant_id} now serves {version}")
        return pointer

    def _copy(self, key: str, source: str, target: str) -> Optional[str]:
        destination = target + key[len(source):]
        try:
            self.store.copy(self.bucket, key, self.bucket, destination)
            return None
        except Exception as e:
            logger.warning(f"[pointer] Copy {key} -> {destination} failed: {e}")
            return str(e)

    def _stale_keys(self, keys: List[str], source: str, target: str) -> List[str]:
        """Mirror keys with no counterpart in the version being published."""
        wanted = {target + key[len(source):] for key in keys}
        try:
            mirrored = self.store.list(self.bucket, target)
        except BuildEngineError as e:
            raise VersionPointerError(f"Cannot list current mirror: {e}") from e
        return [obj.key for obj in mirrored if obj.key not in wanted]

    def _delete(self, keys: List[str]) -> List[str]:
        try:
            return self.store.delete(self.bucket, keys)
        except Exception as e:
            logger.warning(f"[pointer] Removing stale mirror files failed: {e}")
            return list(keys)

    def get_current_pointer(self, tenant_id: str) -> Optional[VersionPointer]:
        try:
            body = self.store.get(self.bucket, pointer_key(tenant_id))
        except ObjectNotFound:
            return None
        return VersionPointer.from_dict(json.loads(body))
