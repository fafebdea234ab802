"""HTTP transport shared by the REST fetcher and writer."""

import asyncio
import logging
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .exceptions import TransportError
from .models.config import EngineConfig
from .models.environment import EnvironmentHandle

logger = logging.getLogger(__name__)


class RestTransport:
    """
    Authenticated JSON calls against one platform REST API.

    ``requests`` does the I/O on a worker thread so callers can await it.
    Every call is bounded by ``config.request_timeout``. Timeouts, network
    failures and non-2xx responses raise ``TransportError``.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        session: Optional[requests.Session] = None
    ):
        self.config = config or EngineConfig()
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retries = Retry(
            total=self.config.max_retries,
            backoff_factor=1.0,
            status_forcelist=[429, 500, 502, 503, 504],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        return session

    def api_path(self, path: str) -> str:
        """Prefix a path with the versioned data API root."""
        return f"/services/data/v{self.config.api_version}/{path.lstrip('/')}"

    def url_for(self, env: EnvironmentHandle, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/services/"):
            path = self.api_path(path)
        return f"{env.instance_url}{path}"

    def _get_headers(self, env: EnvironmentHandle) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {env.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def request_sync(
        self,
        env: EnvironmentHandle,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Any] = None
    ) -> Any:
        """Perform one blocking call and return the decoded JSON body."""
        url = self.url_for(env, path)
        logger.debug(f"{method} {url}")

        try:
            response = self._session.request(
                method,
                url,
                headers=self._get_headers(env),
                params=params,
                json=payload,
                timeout=self.config.request_timeout,
            )
        except requests.exceptions.Timeout as e:
            raise TransportError(f"Request timeout: {e}", url=url) from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Network error: {e}", url=url) from e

        if not response.ok:
            raise TransportError(
                f"API error {response.status_code}: {self._error_message(response)}",
                status_code=response.status_code,
                url=url,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON in response: {e}", status_code=response.status_code, url=url) from e

    async def request(
        self,
        env: EnvironmentHandle,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Any] = None
    ) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.request_sync, env, method, path, params, payload),
                timeout=self.config.request_timeout,
            )
        except asyncio.TimeoutError as e:
            url = self.url_for(env, path)
            raise TransportError(
                f"Request timeout after {self.config.request_timeout}s", url=url
            ) from e

    async def get(self, env: EnvironmentHandle, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request(env, "GET", path, params=params)

    async def post(self, env: EnvironmentHandle, path: str, payload: Any) -> Any:
        return await self.request(env, "POST", path, payload=payload)

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        """Extract ``errorCode: message`` pairs from a platform error body."""
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason or ""

        if isinstance(body, list):
            parts = [
                f"{e.get('errorCode', '')}: {e.get('message', '')}".strip(": ")
                for e in body if isinstance(e, dict)
            ]
            if parts:
                return "; ".join(parts)
        return str(body)
