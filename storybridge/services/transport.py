"""HTTP transport to external issue trackers"""
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import gitlab
import requests

from storybridge.config import settings
from storybridge.errors import BadRequest, Forbidden, UpstreamFailure

logger = logging.getLogger(__name__)


class GitLabProvider:
    """Connection strategy for GitLab servers"""

    type = "gitlab"

    def connect(self, server) -> gitlab.Gitlab:
        if (server.token_type or "private") == "oauth":
            return gitlab.Gitlab(server.url, oauth_token=server.access_token)
        return gitlab.Gitlab(server.url, private_token=server.access_token)


class ProviderRegistry:
    """Maps a server type to the provider that knows how to talk to it"""

    def __init__(self):
        self._providers: Dict[str, Any] = {}

    def register(self, provider) -> None:
        self._providers[provider.type] = provider

    def get(self, type: str):
        provider = self._providers.get(type)
        if provider is None:
            raise BadRequest(f"Unsupported server type: {type}")
        return provider

    @classmethod
    def default(cls) -> "ProviderRegistry":
        registry = cls()
        registry.register(GitLabProvider())
        return registry


class Transport:
    """fetch / fetch_all / post / put / remove against a server's REST API.

    ``user_id`` is the external id of the user the call is made on behalf of
    (GitLab ``sudo``); it requires an admin token on the server.
    """

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        *,
        max_attempts: Optional[int] = None,
        base_delay_s: Optional[float] = None,
    ):
        self.registry = registry or ProviderRegistry.default()
        self.max_attempts = max_attempts or settings.transport_max_attempts
        self.base_delay_s = settings.transport_retry_delay_seconds if base_delay_s is None else base_delay_s
        self.clients: Dict[Tuple[int, str, str], gitlab.Gitlab] = {}

    @staticmethod
    def _should_retry(exc: Exception) -> bool:
        """Best-effort retry predicate for transient failures."""
        rc = getattr(exc, "response_code", None)
        if rc in (429, 500, 502, 503, 504):
            return True
        return isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout))

    def _with_retries(self, fn):
        """Run callable with small exponential backoff on transient errors."""
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:
                if attempt >= self.max_attempts or not self._should_retry(e):
                    raise
                time.sleep(self.base_delay_s * (2 ** (attempt - 1)))
                attempt += 1

    def _client(self, server) -> gitlab.Gitlab:
        if server is None:
            raise Forbidden("No server")
        if server.deleted or server.disabled:
            raise Forbidden(f"Server '{server.name}' is disabled")
        key = (server.id, server.url, server.access_token)
        client = self.clients.get(key)
        if client is None:
            client = self.registry.get(server.type).connect(server)
            self.clients[key] = client
        return client

    def _call(self, server, method: str, path: str, fn):
        client = self._client(server)
        try:
            return self._with_retries(lambda: fn(client))
        except gitlab.exceptions.GitlabError as e:
            rc = getattr(e, "response_code", None)
            logger.error(f"{method} {path} on server {server.id} failed ({rc}): {e}")
            raise UpstreamFailure(f"{method} {path} failed: {e.error_message}", response_code=rc) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"{method} {path} on server {server.id} failed: {e}")
            raise UpstreamFailure(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _query(params: Optional[Dict[str, Any]], user_id: Optional[int]) -> Dict[str, Any]:
        query = dict(params or {})
        if user_id is not None:
            query["sudo"] = user_id
        return query

    def fetch(self, server, path: str, params: Optional[Dict[str, Any]] = None, user_id: Optional[int] = None) -> Any:
        query = self._query(params, user_id)
        return self._call(server, "GET", path, lambda gl: gl.http_get(path, query_data=query))

    def fetch_all(
        self, server, path: str, params: Optional[Dict[str, Any]] = None, user_id: Optional[int] = None
    ) -> List[Any]:
        """GET every page of a list endpoint."""
        query = {"per_page": 100, **self._query(params, user_id)}
        return self._call(server, "GET", path, lambda gl: list(gl.http_list(path, query_data=query, get_all=True)))

    def post(self, server, path: str, body: Optional[Dict[str, Any]] = None, user_id: Optional[int] = None) -> Any:
        query = self._query(None, user_id)
        return self._call(
            server, "POST", path, lambda gl: gl.http_post(path, query_data=query, post_data=body or {})
        )

    def put(self, server, path: str, body: Optional[Dict[str, Any]] = None, user_id: Optional[int] = None) -> Any:
        query = self._query(None, user_id)
        return self._call(
            server, "PUT", path, lambda gl: gl.http_put(path, query_data=query, post_data=body or {})
        )

    def remove(self, server, path: str, user_id: Optional[int] = None) -> None:
        query = self._query(None, user_id)
        self._call(server, "DELETE", path, lambda gl: gl.http_delete(path, query_data=query))
