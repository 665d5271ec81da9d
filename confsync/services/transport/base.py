"""
Transport Port

The contract the config service uses to talk to the server.
Implementations return an HttpResult for every HTTP status and raise
NetworkFailure only for I/O errors and timeouts.
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

CONFIG_PATH = "/v1/cs/configs"
LISTENER_PATH = "/v1/cs/configs/listener"
LOGIN_PATH = "/v1/auth/users/login"

HTTP_OK = 200
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409


@dataclass(frozen=True)
class HttpResult:
    """Status code plus decoded body"""
    code: int
    content: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.code == HTTP_OK


@runtime_checkable
class Transport(Protocol):
    """Request/response port to a configuration server"""

    @property
    def name(self) -> str:
        """Logical name for diagnostics and the local cache directory"""
        ...

    async def get(
        self,
        path: str,
        headers: dict[str, str] | None,
        params: dict[str, str] | None,
        encoding: str,
        timeout: float,
    ) -> HttpResult:
        ...

    async def post(
        self,
        path: str,
        headers: dict[str, str] | None,
        params: dict[str, str] | None,
        encoding: str,
        timeout: float,
    ) -> HttpResult:
        ...

    async def delete(
        self,
        path: str,
        headers: dict[str, str] | None,
        params: dict[str, str] | None,
        encoding: str,
        timeout: float,
    ) -> HttpResult:
        ...

    async def close(self) -> None:
        ...
