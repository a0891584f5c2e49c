#build_engine\infrastructure\aws\s3.py

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from build_engine.core.clients import ObjectStore, ObjectSummary
from build_engine.core.errors import ObjectNotFound, TransientInfraError
from build_engine.infrastructure.aws.session import error_code, reraise_transient

logger = logging.getLogger(__name__)

MISSING_CODES = frozenset({"NoSuchKey", "404", "NotFound"})

# delete_objects accepts at most this many keys per request
DELETE_BATCH = 1000


class S3ObjectStore(ObjectStore):
    """ObjectStore backed by an S3 client."""

    def __init__(self, client):
        self.client = client

    def _translate(self, error: Exception, action: str, bucket: str, key: str) -> Exception:
        if isinstance(error, ClientError) and error_code(error) in MISSING_CODES:
            return ObjectNotFound(f"s3://{bucket}/{key}")
        reraise_transient(error, action)
        return error

    def get(self, bucket: str, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, "get_object", bucket, key) from e

    def download(self, bucket: str, key: str, destination: Path) -> int:
        try:
            self.client.download_file(bucket, key, str(destination))
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, "download_file", bucket, key) from e
        size = destination.stat().st_size
        logger.info(f"[s3] downloaded s3://{bucket}/{key} ({size} bytes)")
        return size

    def put(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        try:
            self.client.put_object(
                Bucket=bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
                Metadata=metadata or {},
            )
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, "put_object", bucket, key) from e

    def list(self, bucket: str, prefix: str) -> List[ObjectSummary]:
        summaries: List[ObjectSummary] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    summaries.append(ObjectSummary(key=item["Key"], size=item.get("Size", 0)))
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, "list_objects_v2", bucket, prefix) from e
        return summaries

    def copy(self, src_bucket: str, src_key: str, dst_bucket: str, dst_key: str) -> None:
        try:
            self.client.copy_object(
                Bucket=dst_bucket,
                Key=dst_key,
                CopySource={"Bucket": src_bucket, "Key": src_key},
                MetadataDirective="COPY",
            )
        except (ClientError, BotoCoreError) as e:
            error = self._translate(e, "copy_object", src_bucket, src_key)
            if isinstance(error, ObjectNotFound):
                raise error from e
            # Any other copy failure counts against the mirror threshold
            raise TransientInfraError(f"copy_object failed for {src_key}: {e}") from e

    def delete(self, bucket: str, keys: Sequence[str]) -> List[str]:
        failed: List[str] = []
        for start in range(0, len(keys), DELETE_BATCH):
            batch = list(keys[start:start + DELETE_BATCH])
            try:
                response = self.client.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as e:
                logger.warning(f"[s3] delete_objects failed for {len(batch)} keys in {bucket}: {e}")
                failed.extend(batch)
                continue

            for error in response.get("Errors", []):
                if error.get("Code") in MISSING_CODES:
                    continue
                logger.warning(f"[s3] could not delete {error.get('Key')}: {error.get('Code')}")
                failed.append(error["Key"])
        return failed
