"""Contracts for the external collaborators: object store, CDN provider, DNS."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence


@dataclass(frozen=True)
class ObjectSummary:
    key: str
    size: int


@dataclass
class DistributionConfig:
    """Provider-neutral description of a distribution to create."""
    caller_reference: str
    comment: str
    origin_id: str
    origin_domain: str
    origin_path: str = ""
    aliases: List[str] = field(default_factory=list)
    default_root_object: str = "index.html"
    price_class: str = "PriceClass_100"


@dataclass
class DistributionInfo:
    distribution_id: str
    domain: str
    status: str


class ObjectStore(ABC):
    """Byte blobs addressed by bucket + key."""

    @abstractmethod
    def get(self, bucket: str, key: str) -> bytes:
        """Raises ObjectNotFound for a missing key, TransientInfraError on network trouble."""
        raise NotImplementedError

    @abstractmethod
    def put(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def list(self, bucket: str, prefix: str) -> List[ObjectSummary]:
        raise NotImplementedError

    @abstractmethod
    def copy(self, src_bucket: str, src_key: str, dst_bucket: str, dst_key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, bucket: str, keys: Sequence[str]) -> List[str]:
        """Remove keys, returning the ones that could not be deleted. Missing keys are not failures."""
        raise NotImplementedError

    def download(self, bucket: str, key: str, destination: Path) -> int:
        """Write an object to a local file, returning its size."""
        body = self.get(bucket, key)
        destination.write_bytes(body)
        return len(body)


class CdnProvider(ABC):
    """Edge caching provider."""

    @abstractmethod
    def create_distribution(self, config: DistributionConfig) -> DistributionInfo:
        """Raises QuotaExceededError when the account is out of distributions."""
        raise NotImplementedError

    @abstractmethod
    def get_distribution(self, distribution_id: str) -> DistributionInfo:
        """Raises DistributionNotFound for an unknown id."""
        raise NotImplementedError

    @abstractmethod
    def create_invalidation(self, distribution_id: str, paths: Sequence[str]) -> str:
        raise NotImplementedError

    @abstractmethod
    def publish_edge_function(self, name: str, code: str) -> str:
        """Create or update and publish a viewer-request function. Returns its reference."""
        raise NotImplementedError


class DnsClient(ABC):
    """Subdomain automation for tenants on individual distributions."""

    @abstractmethod
    def create_or_update_subdomain(self, tenant_id: str, target: str) -> Optional[str]:
        """Point the tenant's subdomain at target. Returns a change id, None when disabled."""
        raise NotImplementedError
