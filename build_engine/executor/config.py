#build_engine\executor\config.py
from dataclasses import dataclass


@dataclass(frozen=True)
class WorkerConfig:
    worker_id: str

    poll_interval_seconds: float = 2.0
    pool_size: int = 2

    lease_seconds: int = 60

    retry_backoff_seconds: float = 2.0

    @classmethod
    def from_settings(cls, worker_id: str, settings) -> "WorkerConfig":
        return cls(
            worker_id=worker_id,
            poll_interval_seconds=settings.worker_poll_interval,
            pool_size=settings.worker_pool_size,
            lease_seconds=settings.lease_seconds,
            retry_backoff_seconds=settings.queue_backoff_seconds,
        )
