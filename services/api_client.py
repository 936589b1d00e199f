"""
Remote API Client Module

This module replays queued operations against the social app's HTTP API.
Each queued payload names an action and its arguments; the action decides
the endpoint, the arguments are sent as the JSON body.
"""

from typing import Any, Dict, Optional

import requests

from config import settings
from utils.exceptions import ReplayHTTPError, RemoteUnavailableError, UnknownActionError
from utils.logger import get_logger

logger = get_logger(__name__)

# action -> (HTTP method, path template filled from the payload args)
ACTION_ENDPOINTS = {
    "post": ("POST", "/api/posts"),
    "like": ("POST", "/api/posts/{postId}/like"),
    "comment": ("POST", "/api/posts/{postId}/comments"),
    "retweet": ("POST", "/api/posts/{postId}/retweet"),
    "follow": ("POST", "/api/users/{userId}/follow"),
}


class RemoteApiClient:
    """HTTP client that replays offline operations against the remote API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the API client.

        Args:
            base_url: API root, defaults to settings.API_BASE_URL.
            auth_token: Bearer token, defaults to settings.API_AUTH_TOKEN.
            timeout: Seconds per request, defaults to settings.API_REQUEST_TIMEOUT.
            session: requests.Session to use (a new one by default).
        """
        self.base_url = (base_url or settings.API_BASE_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else settings.API_REQUEST_TIMEOUT
        self.session = session or requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})

        token = auth_token if auth_token is not None else settings.API_AUTH_TOKEN
        if token:
            self.session.headers.update({'Authorization': f'Bearer {token}'})

    def build_request(self, payload: Dict[str, Any]):
        """
        Resolve a queued payload to an HTTP method, URL and JSON body.

        Args:
            payload: ``{"action": ..., "args": {...}}``

        Returns:
            tuple: (method, url, body)

        Raises:
            UnknownActionError: If the action is unknown or a path argument is missing.
        """
        action = payload.get("action")
        if action not in ACTION_ENDPOINTS:
            raise UnknownActionError(f"Unknown queue item action: {action!r}")

        args = payload.get("args") or {}
        method, template = ACTION_ENDPOINTS[action]
        try:
            path = template.format(**args)
        except KeyError as e:
            raise UnknownActionError(f"Action '{action}' is missing argument {e}") from e
        except TypeError as e:
            raise UnknownActionError(f"Action '{action}' has unusable arguments: {e}") from e

        return method, f"{self.base_url}{path}", args

    def _send(self, method: str, url: str, body: Dict[str, Any], what: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.session.request(method, url, json=body, timeout=self.timeout)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            logger.warning(f"Remote API unreachable while trying to {what}: {e}")
            raise RemoteUnavailableError(f"Failed to {what}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ReplayHTTPError(f"Failed to {what}: {e}") from e

        if not response.ok:
            logger.warning(f"Remote API rejected request to {what}: {response.status_code} {response.reason}")
            raise ReplayHTTPError(
                f"Failed to {what}: {response.status_code} {response.reason}",
                status_code=response.status_code
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def replay(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Replay one queued operation.

        Returns:
            Optional[Dict]: Decoded JSON body of the response, if any.

        Raises:
            UnknownActionError: If the payload cannot be mapped to an endpoint.
            RemoteUnavailableError: If the API cannot be reached.
            ReplayHTTPError: If the API answers with a non-success status.
        """
        method, url, body = self.build_request(payload)
        result = self._send(method, url, body, f"replay '{payload.get('action')}'")
        logger.info(f"Replayed '{payload.get('action')}' via {method} {url}")
        return result

    def create_post(self, post: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Create a post from an offline draft.

        Args:
            post: The draft's content fields.

        Returns:
            Optional[Dict]: The created post as returned by the API.
        """
        method, url, body = self.build_request({"action": "post", "args": post})
        return self._send(method, url, body, "create post")

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()
