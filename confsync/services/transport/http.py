"""
HTTP Transport

Talks to the configuration server over HTTP with a single reusable
httpx.AsyncClient.

- GET/DELETE carry parameters in the query string, POST form-encodes them
- Multiple servers are tried in rotation on I/O errors and 5xx answers
- Optional username/password login; the access token is cached until expiry
"""

import asyncio
import time

import httpx

from confsync.common.config import ClientConfig
from confsync.common.exceptions import NetworkFailure
from confsync.common.logging_setup import get_service_logger

from .base import LOGIN_PATH, HttpResult

logger = get_service_logger("transport.http")

CLIENT_VERSION = "confsync-python"

# Refresh the token when this fraction of its TTL is left
TOKEN_REFRESH_WINDOW = 0.1

LOGIN_TIMEOUT_S = 5.0


def _fixed_name(servers: list[str], namespace: str) -> str:
    """fixed-<host>_<port>[-<host>_<port>...][-<namespace>]"""
    parts = []
    for url in servers:
        host_port = url.split("://", 1)[-1]
        parts.append(host_port.replace(":", "_"))
    name = "fixed-" + "-".join(parts)
    if namespace:
        name = f"{name}-{namespace}"
    return name


class HttpTransport:
    """
    Transport over HTTP.

    Network failures surface as NetworkFailure; every HTTP status,
    including errors, is returned as an HttpResult.
    """

    def __init__(
        self,
        config: ClientConfig,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self.servers = config.servers()
        self.context_path = "/" + config.context_path.strip("/") if config.context_path.strip("/") else ""
        self._name = _fixed_name(self.servers, config.namespace)
        self._index = 0

        # Reusable HTTP client - avoids connection overhead per request
        self._client = client
        self._owns_client = client is None

        # Login state
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0
        self._login_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def current_server(self) -> str:
        return self.servers[self._index % len(self.servers)]

    def _rotate(self) -> None:
        self._index = (self._index + 1) % len(self.servers)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create reusable HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient()
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close HTTP client"""
        if self._client and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def get(self, path, headers=None, params=None, encoding="utf-8", timeout=3.0) -> HttpResult:
        return await self._request("GET", path, headers, params, encoding, timeout)

    async def post(self, path, headers=None, params=None, encoding="utf-8", timeout=3.0) -> HttpResult:
        return await self._request("POST", path, headers, params, encoding, timeout)

    async def delete(self, path, headers=None, params=None, encoding="utf-8", timeout=3.0) -> HttpResult:
        return await self._request("DELETE", path, headers, params, encoding, timeout)

    def _build_headers(self, headers: dict[str, str] | None, encoding: str) -> dict[str, str]:
        merged = {
            "Client-Version": CLIENT_VERSION,
            "Accept-Charset": encoding,
            "Content-Type": f"application/x-www-form-urlencoded;charset={encoding}",
        }
        if headers:
            merged.update(headers)
        return merged

    async def _request(
        self,
        method: str,
        path: str,
        headers: dict[str, str] | None,
        params: dict[str, str] | None,
        encoding: str,
        timeout: float,
    ) -> HttpResult:
        """
        Send a request, rotating through servers until one answers.

        Args:
            method: GET, POST or DELETE
            path: Path below the context path
            headers: Extra request headers
            params: Request parameters
            encoding: Text encoding for request and response
            timeout: Overall deadline in seconds across all attempts

        Returns:
            HttpResult from the first server that answered without a 5xx,
            or the last 5xx answer if every attempt got one

        Raises:
            NetworkFailure: No server could be reached in time
        """
        client = await self._get_client()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        attempts = max(self.config.max_retry, 1)
        last_result: HttpResult | None = None
        last_error: str | None = None

        for attempt in range(attempts):
            remaining = deadline - loop.time()
            if remaining <= 0:
                break

            server = self.current_server
            url = f"{server}{self.context_path}{path}"
            request_params = dict(params or {})
            token = await self._ensure_login(server)
            if token:
                request_params["accessToken"] = token

            try:
                if method == "POST":
                    response = await client.request(
                        method,
                        url,
                        data=request_params,
                        headers=self._build_headers(headers, encoding),
                        timeout=remaining,
                    )
                else:
                    response = await client.request(
                        method,
                        url,
                        params=request_params,
                        headers=self._build_headers(headers, encoding),
                        timeout=remaining,
                    )

                result = HttpResult(
                    code=response.status_code,
                    content=response.content.decode(encoding, errors="replace"),
                    headers=dict(response.headers),
                )

                if result.code >= 500:
                    last_result = result
                    logger.error(
                        f"[{self.name}] [{method}] {url} answered {result.code} "
                        f"(attempt {attempt + 1}/{attempts}), trying next server"
                    )
                    self._rotate()
                    continue

                return result

            except httpx.TimeoutException:
                last_error = f"timeout calling {url}"
                logger.warning(f"[{self.name}] [{method}] timeout (attempt {attempt + 1}/{attempts}): {url}")

            except httpx.TransportError as e:
                last_error = f"{e.__class__.__name__}: {e}"
                logger.warning(
                    f"[{self.name}] [{method}] connection error (attempt {attempt + 1}/{attempts}): {url}: {e}"
                )

            self._rotate()

        if last_result is not None:
            return last_result

        raise NetworkFailure(last_error or f"no server answered within {timeout}s", server=self.current_server)

    async def _ensure_login(self, server: str) -> str | None:
        """Return a valid access token, logging in when needed"""
        if not self.config.username:
            return None

        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        async with self._login_lock:
            # Another coroutine may have refreshed it while we waited
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            client = await self._get_client()
            try:
                response = await client.post(
                    f"{server}{self.context_path}{LOGIN_PATH}",
                    data={"username": self.config.username, "password": self.config.password or ""},
                    timeout=LOGIN_TIMEOUT_S,
                )
                if response.status_code != 200:
                    logger.warning(f"[{self.name}] login failed: HTTP {response.status_code}")
                    return None

                data = response.json()
                token = data.get("accessToken")
                ttl = float(data.get("tokenTtl", 18000))
                if not token:
                    logger.warning(f"[{self.name}] login answer carried no accessToken")
                    return None

                self._access_token = token
                self._token_expires_at = time.monotonic() + ttl * (1 - TOKEN_REFRESH_WINDOW)
                logger.info(f"[{self.name}] login ok, token ttl={ttl:.0f}s")
                return token

            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"[{self.name}] login error: {e}")
                return None
