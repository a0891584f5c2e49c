# build_engine/infrastructure/memory/clients.py
"""In-process object store, CDN provider and DNS for tests and local runs."""

import itertools
from threading import Lock
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from build_engine.core.clients import (
    CdnProvider,
    DistributionConfig,
    DistributionInfo,
    DnsClient,
    ObjectStore,
    ObjectSummary,
)
from build_engine.core.errors import (
    DistributionNotFound,
    ObjectNotFound,
    QuotaExceededError,
    TransientInfraError,
)


class InMemoryObjectStore(ObjectStore):
    """
    Buckets are plain dicts. ``fail_put``/``fail_copy``/``fail_delete`` are predicates on the
    key; put and copy then raise TransientInfraError, delete reports the key as failed.
    """

    def __init__(self):
        self._objects: Dict[Tuple[str, str], bytes] = {}
        self._content_types: Dict[Tuple[str, str], str] = {}
        self._lock = Lock()
        self.fail_put: Optional[Callable[[str], bool]] = None
        self.fail_copy: Optional[Callable[[str], bool]] = None
        self.fail_delete: Optional[Callable[[str], bool]] = None
        self.put_calls = 0

    def get(self, bucket: str, key: str) -> bytes:
        with self._lock:
            try:
                return self._objects[(bucket, key)]
            except KeyError:
                raise ObjectNotFound(f"s3://{bucket}/{key}") from None

    def put(self, bucket, key, body, content_type, metadata=None) -> None:
        with self._lock:
            self.put_calls += 1
        if self.fail_put and self.fail_put(key):
            raise TransientInfraError(f"Simulated put failure for {key}")
        with self._lock:
            self._objects[(bucket, key)] = bytes(body)
            self._content_types[(bucket, key)] = content_type

    def list(self, bucket: str, prefix: str) -> List[ObjectSummary]:
        with self._lock:
            return sorted(
                (ObjectSummary(key=k, size=len(v)) for (b, k), v in self._objects.items()
                 if b == bucket and k.startswith(prefix)),
                key=lambda o: o.key,
            )

    def copy(self, src_bucket, src_key, dst_bucket, dst_key) -> None:
        if self.fail_copy and self.fail_copy(src_key):
            raise TransientInfraError(f"Simulated copy failure for {src_key}")
        with self._lock:
            try:
                body = self._objects[(src_bucket, src_key)]
            except KeyError:
                raise ObjectNotFound(f"s3://{src_bucket}/{src_key}") from None
            self._objects[(dst_bucket, dst_key)] = body
            self._content_types[(dst_bucket, dst_key)] = self._content_types.get(
                (src_bucket, src_key), "application/octet-stream"
            )

    def delete(self, bucket, keys) -> List[str]:
        failed = []
        for key in keys:
            if self.fail_delete and self.fail_delete(key):
                failed.append(key)
                continue
            with self._lock:
                self._objects.pop((bucket, key), None)
                self._content_types.pop((bucket, key), None)
        return failed

    def content_type(self, bucket: str, key: str) -> Optional[str]:
        return self._content_types.get((bucket, key))

    def keys(self, bucket: str, prefix: str = "") -> List[str]:
        return [o.key for o in self.list(bucket, prefix)]


class FakeCdnProvider(CdnProvider):
    def __init__(self, quota: Optional[int] = None):
        self.quota = quota
        self.distributions: Dict[str, DistributionInfo] = {}
        self.configs: Dict[str, DistributionConfig] = {}
        self.invalidations: List[Tuple[str, Tuple[str, ...]]] = []
        self.functions: Dict[str, str] = {}
        self.failing_invalidations: Set[str] = set()
        self._ids = itertools.count(1)
        self._lock = Lock()

    def create_distribution(self, config: DistributionConfig) -> DistributionInfo:
        with self._lock:
            if self.quota is not None and len(self.distributions) >= self.quota:
                raise QuotaExceededError("TooManyDistributions")
            distribution_id = f"E{next(self._ids):06d}"
            info = DistributionInfo(
                distribution_id=distribution_id,
                domain=f"d{distribution_id.lower()}.cloudfront.net",
                status="InProgress",
            )
            self.distributions[distribution_id] = info
            self.configs[distribution_id] = config
            return info

    def get_distribution(self, distribution_id: str) -> DistributionInfo:
        with self._lock:
            info = self.distributions.get(distribution_id)
        if info is None:
            raise DistributionNotFound(distribution_id)
        return info

    def create_invalidation(self, distribution_id: str, paths: Sequence[str]) -> str:
        if distribution_id in self.failing_invalidations:
            raise TransientInfraError(f"Simulated invalidation failure on {distribution_id}")
        with self._lock:
            if distribution_id not in self.distributions:
                raise DistributionNotFound(distribution_id)
            self.invalidations.append((distribution_id, tuple(paths)))
            return f"I{len(self.invalidations):06d}"

    def publish_edge_function(self, name: str, code: str) -> str:
        with self._lock:
            self.functions[name] = code
        return f"arn:fake:function/{name}"

    def add_existing(self, distribution_id: str, domain: str) -> DistributionInfo:
        """Register a distribution created outside the engine (the shared one)."""
        info = DistributionInfo(distribution_id=distribution_id, domain=domain, status="Deployed")
        with self._lock:
            self.distributions[distribution_id] = info
        return info


class InMemoryDnsClient(DnsClient):
    def __init__(self, base_domain: str, enabled: bool = True):
        self.base_domain = base_domain
        self.enabled = enabled
        self.records: Dict[str, str] = {}

    def create_or_update_subdomain(self, tenant_id: str, target: str) -> Optional[str]:
        if not self.enabled:
            return None
        self.records[f"{tenant_id}.{self.base_domain}"] = target
        return f"change-{len(self.records)}"
