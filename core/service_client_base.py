"""
Base Service Client for Internal Microservice Communication

Base class for the HTTP clients the billing engine uses to reach other
platform services.
"""

import httpx
import logging
import os
from typing import Optional, Dict, Any
from abc import ABC

logger = logging.getLogger(__name__)


class BaseServiceClient(ABC):
    """
    Microservice client base class

    Handles:
    1. Service URL resolution (explicit URL, {SERVICE_NAME}_URL env, localhost)
    2. Internal service headers
    3. HTTP client lifecycle
    4. Timeouts

    Example:
        class NotificationClient(BaseServiceClient):
            service_name = "notification_service"
            default_port = 8206

            async def send(self, payload):
                response = await self.post("/api/v1/notifications/send", json=payload)
                return response.json()
    """

    # Subclasses define these
    service_name: str = None
    default_port: int = None

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0
    ):
        """
        Initialize service client

        Args:
            base_url: Service base URL (resolved from env if not provided)
            timeout: Request timeout in seconds
        """
        if not self.service_name:
            raise ValueError(f"{self.__class__.__name__} must define 'service_name'")

        if base_url:
            self.base_url = base_url.rstrip('/')
        else:
            self.base_url = self._resolve_service_url()

        self.client = httpx.AsyncClient(
            timeout=timeout,
            headers=self._build_default_headers()
        )

        logger.debug(f"Initialized {self.service_name} client: {self.base_url}")

    def _resolve_service_url(self) -> str:
        env_key = f"{self.service_name.upper()}_URL"
        url = os.getenv(env_key)
        if url:
            return url.rstrip('/')
        default_url = f"http://localhost:{self.default_port}" if self.default_port else "http://localhost:8000"
        logger.warning(f"{env_key} not set for {self.service_name}, using default: {default_url}")
        return default_url

    def _build_default_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"isA-Internal-Client/{self.service_name}"
        }

        internal_token = os.getenv("INTERNAL_SERVICE_TOKEN")
        if internal_token:
            headers["X-Internal-Service-Token"] = internal_token

        return headers

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()
        logger.debug(f"Closed {self.service_name} client")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ========================================
    # HTTP methods
    # ========================================

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        return await self.client.get(url, params=params, headers=headers)

    async def post(
        self,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        return await self.client.post(url, json=json, headers=headers)

    async def health_check(self) -> bool:
        """
        Health check

        Returns:
            Whether the service reports healthy
        """
        try:
            response = await self.get("/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"{self.service_name} health check failed: {e}")
            return False


__all__ = ["BaseServiceClient"]
