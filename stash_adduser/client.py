from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable

import httpx

from stash_adduser.config import DEFAULT_CONNECT_TIMEOUT
from stash_adduser.protocol import ResultCode, code_for_status, format_code

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 10

ClientFactory = Callable[[str, httpx.Timeout, httpx.BasicAuth | None], httpx.Client]


def default_client_factory(
    base_url: str, timeout: httpx.Timeout, auth: httpx.BasicAuth | None
) -> httpx.Client:
    return httpx.Client(base_url=base_url, timeout=timeout, auth=auth)


def normalize_host(host: str) -> str:
    host = host.strip().rstrip("/")
    if "://" not in host:
        host = f"http://{host}"
    return host


@dataclass(frozen=True)
class Server:
    url: str
    priority: int


class StashClient:
    """Client for a running stash admin service.

    Operations return a ``ResultCode`` (plus data where there is any) instead of
    raising; transport failures become ``CONNECT_FAILED`` or ``TIMEOUT``.
    """

    def __init__(
        self,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.connect_timeout = connect_timeout
        self._client_factory = client_factory or default_client_factory
        self._servers: list[Server] = []
        self._auth: httpx.BasicAuth | None = None
        self._http: httpx.Client | None = None
        self.connected_to: str | None = None

    @property
    def connected(self) -> bool:
        return self._http is not None

    def authority(self, username: str, password: str) -> None:
        self._auth = httpx.BasicAuth(username, password)

    def add_server(self, host: str, priority: int = DEFAULT_PRIORITY) -> None:
        self._servers.append(Server(url=normalize_host(host), priority=priority))

    def connect(self) -> ResultCode:
        if self._http is not None:
            return ResultCode.OK
        if not self._servers:
            return ResultCode.NO_SERVERS

        result = ResultCode.CONNECT_FAILED
        timeout = httpx.Timeout(self.connect_timeout)
        # sorted() is stable, so equal priorities keep the order they were added in
        for server in sorted(self._servers, key=lambda s: s.priority, reverse=True):
            try:
                http = self._client_factory(server.url, timeout, self._auth)
            except httpx.InvalidURL as exc:
                logger.debug("Invalid server address %s: %s", server.url, exc)
                result = ResultCode.CONNECT_FAILED
                continue
            try:
                response = http.get("/session")
            except httpx.TimeoutException as exc:
                logger.debug("Timed out connecting to %s: %s", server.url, exc)
                http.close()
                result = ResultCode.TIMEOUT
                continue
            except (httpx.TransportError, httpx.InvalidURL) as exc:
                logger.debug("Unable to connect to %s: %s", server.url, exc)
                http.close()
                result = ResultCode.CONNECT_FAILED
                continue

            result = _response_code(response)
            if result is ResultCode.OK:
                self._http = http
                self.connected_to = server.url
                logger.debug("Connected to %s", server.url)
                return result
            http.close()
            logger.debug("Server %s refused session: %s", server.url, format_code(result))
            if result in (ResultCode.AUTH_FAILED, ResultCode.NOT_ADMIN):
                return result
        return result

    def create_username(self, username: str, *, is_admin: bool = False) -> tuple[ResultCode, int]:
        code = self.connect()
        if code is not ResultCode.OK:
            return code, 0
        response, code = self._request("POST", "/users", json={"username": username, "is_admin": is_admin})
        if code is not ResultCode.OK:
            return code, 0
        try:
            user_id = int(response.json()["id"])
        except (ValueError, KeyError, TypeError):
            return ResultCode.PROTOCOL_ERROR, 0
        return ResultCode.OK, user_id

    def set_password(self, user_id: int, password: str) -> ResultCode:
        code = self.connect()
        if code is not ResultCode.OK:
            return code
        _, code = self._request("PUT", f"/users/{user_id}/password", json={"password": password})
        return code

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None
            self.connected_to = None

    def __enter__(self) -> StashClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _request(self, method: str, url: str, **kwargs) -> tuple[httpx.Response | None, ResultCode]:
        assert self._http is not None
        try:
            response = self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.debug("%s %s timed out: %s", method, url, exc)
            return None, ResultCode.TIMEOUT
        except (httpx.TransportError, httpx.InvalidURL) as exc:
            logger.debug("%s %s failed: %s", method, url, exc)
            return None, ResultCode.CONNECT_FAILED
        return response, _response_code(response)


def _response_code(response: httpx.Response) -> ResultCode:
    if response.is_success:
        return ResultCode.OK
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("code"), int):
        try:
            return ResultCode(body["code"])
        except ValueError:
            return ResultCode.PROTOCOL_ERROR
    return code_for_status(response.status_code)
