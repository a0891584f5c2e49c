# build_engine/client.py
"""HTTP client for the build engine API."""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("success", "failed")


class BuildEngineClient:
    """Client for submitting builds and following them to completion."""

    def __init__(self, base_url: str, timeout: int = 30):
        """
        Initialize client.

        Args:
            base_url: Base URL of the API (e.g., "http://localhost:8000")
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def health_check(self) -> bool:
        try:
            response = requests.get(f"{self.base_url}/health", timeout=5)
            return response.status_code == 200
        except requests.exceptions.RequestException as e:
            logger.error(f"Health check failed: {e}")
            return False

    def submit_build(
        self,
        *,
        build_id: str,
        tenant_id: str,
        storage_key: str,
        user_id: Optional[str] = None,
        build_config: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Submit a build job.

        Returns:
            The submit response ({"build": {...}, "job_id": ...})

        Raises:
            ValueError: the API rejected the job (400/409)
            RuntimeError: transport failure or unexpected status
        """
        payload = {
            "buildId": build_id,
            "tenantId": tenant_id,
            "userId": user_id,
            "storageKey": storage_key,
            "buildConfig": build_config or {},
        }

        try:
            response = requests.post(f"{self.base_url}/builds", json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise RuntimeError(f"Build submission timeout after {self.timeout}s")
        except requests.exceptions.ConnectionError:
            raise RuntimeError(f"Cannot connect to build engine at {self.base_url}")

        if response.status_code in (400, 409):
            raise ValueError(response.json().get("detail", response.text))
        if response.status_code != 201:
            raise RuntimeError(f"Build submission failed ({response.status_code}): {response.text}")

        data = response.json()
        logger.info(f"[{build_id}] ✅ Build queued as job {data['job_id']}")
        return data

    def get_build(self, build_id: str) -> Optional[Dict[str, Any]]:
        """Returns None for an unknown build."""
        response = requests.get(f"{self.base_url}/builds/{build_id}", timeout=self.timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def wait_for_build(
        self,
        build_id: str,
        *,
        poll_interval: float = 5.0,
        timeout: float = 1800.0,
    ) -> Dict[str, Any]:
        """
        Poll until the build reaches success or failed.

        Raises:
            TimeoutError: still running after ``timeout`` seconds
        """
        deadline = time.monotonic() + timeout
        while True:
            build = self.get_build(build_id)
            if build is None:
                raise RuntimeError(f"Build {build_id} not found")
            if build["status"] in TERMINAL_STATUSES:
                return build
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Build {build_id} still {build['status']} after {timeout}s")
            time.sleep(poll_interval)

    def get_deployment_status(self, tenant_id: str) -> Dict[str, Any]:
        response = requests.get(f"{self.base_url}/tenants/{tenant_id}/deployment", timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def list_builds(self, tenant_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"status": status} if status else {}
        response = requests.get(
            f"{self.base_url}/tenants/{tenant_id}/builds",
            params=params,
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()["builds"]

    def rollback(self, tenant_id: str, build_id: str) -> Dict[str, Any]:
        response = requests.post(
            f"{self.base_url}/tenants/{tenant_id}/rollback",
            json={"buildId": build_id},
            timeout=self.timeout,
        )
        if response.status_code == 400:
            raise ValueError(response.json().get("detail", response.text))
        response.raise_for_status()
        return response.json()

    def migrate(self, tenant_id: str, strategy: str) -> Dict[str, Any]:
        response = requests.post(
            f"{self.base_url}/tenants/{tenant_id}/migrate",
            json={"strategy": strategy},
            timeout=self.timeout,
        )
        if response.status_code == 400:
            raise ValueError(response.json().get("detail", response.text))
        response.raise_for_status()
        return response.json()
