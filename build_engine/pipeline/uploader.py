# build_engine/pipeline/uploader.py

import logging
import mimetypes
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from build_engine.core.clients import ObjectStore
from build_engine.core.errors import BuildValidationError, PartialUploadError

logger = logging.getLogger(__name__)


def deployment_prefix(tenant_id: str, build_id: str) -> str:
    return f"tenants/{tenant_id}/deployments/{build_id}/"


def content_type_for(path: str) -> str:
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "application/octet-stream"


@dataclass
class UploadReport:
    prefix: str
    total: int
    uploaded: int
    failed: List[str] = field(default_factory=list)

    @property
    def failure_rate(self) -> float:
        return len(self.failed) / self.total if self.total else 0.0


class ArtifactUploader:
    """
    Uploads an export tree under ``tenants/{tenant}/deployments/{build}/``.

    Files go out in batches of ``batch_width`` parallel puts. Each file is
    retried with exponential backoff; if the share of files that still
    failed exceeds ``failure_threshold`` the upload is aborted.
    """

    def __init__(
        self,
        store: ObjectStore,
        bucket: str,
        *,
        batch_width: int = 10,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        failure_threshold: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.bucket = bucket
        self.batch_width = batch_width
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.failure_threshold = failure_threshold
        self._sleep = sleep

    def upload(self, export_dir: Path, tenant_id: str, build_id: str) -> UploadReport:
        prefix = deployment_prefix(tenant_id, build_id)
        files = self._collect(export_dir)

        if not files:
            raise BuildValidationError(f"Export directory {export_dir} contains no files")

        logger.info(f"[upload] Uploading {len(files)} files to s3://{self.bucket}/{prefix}")

        failed: List[str] = []
        with ThreadPoolExecutor(max_workers=self.batch_width) as pool:
            for start in range(0, len(files), self.batch_width):
                batch = files[start:start + self.batch_width]
                results = pool.map(lambda item: self._upload_one(prefix, build_id, *item), batch)
                for (_, relative), error in zip(batch, results):
                    if error:
                        failed.append(relative)

        report = UploadReport(
            prefix=prefix,
            total=len(files),
            uploaded=len(files) - len(failed),
            failed=failed,
        )

        if report.failure_rate > self.failure_threshold:
            raise PartialUploadError(
                f"Upload failed for {len(failed)}/{len(files)} files "
                f"({report.failure_rate:.0%} > {self.failure_threshold:.0%})",
                failed=len(failed),
                total=len(files),
            )

        if failed:
            logger.warning(
                f"[upload] {len(failed)}/{len(files)} files failed, under threshold: {failed[:10]}"
            )
        else:
            logger.info(f"[upload] ✅ Uploaded {report.uploaded} files")

        return report

    def _collect(self, export_dir: Path) -> List[Tuple[Path, str]]:
        files = []
        for dirpath, _, filenames in os.walk(export_dir):
            for name in filenames:
                full = Path(dirpath) / name
                relative = full.relative_to(export_dir).as_posix()
                files.append((full, relative))
        files.sort(key=lambda item: item[1])
        return files

    def _upload_one(self, prefix: str, build_id: str, path: Path, relative: str) -> Optional[str]:
        """Returns None on success, the last error message otherwise."""
        body = path.read_bytes()
        key = prefix + relative
        last_error = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                self.store.put(
                    self.bucket,
                    key,
                    body,
                    content_type_for(relative),
                    metadata={"build-id": build_id},
                )
                return None
            except Exception as e:
                last_error = str(e)
                if attempt < self.max_attempts:
                    delay = self.backoff_seconds * 2 ** (attempt - 1)
                    logger.warning(
                        f"[upload] {relative} attempt {attempt}/{self.max_attempts} failed: {e}, "
                        f"retrying in {delay:.1f}s"
                    )
                    self._sleep(delay)

        logger.error(f"[upload] {relative} failed after {self.max_attempts} attempts: {last_error}")
        return last_error
