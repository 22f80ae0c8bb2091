"""Low-level HTTP client for Keycloak Admin API.

Handles authentication, token management, and HTTP operations.
"""
from __future__ import annotations
from typing import Optional, Dict, Any
from datetime import datetime, timedelta

import requests

from .exceptions import (
    KeycloakAPIError,
    KeycloakConflictError,
    KeycloakNotFoundError,
    KeycloakUnavailableError,
)

REQUEST_TIMEOUT = 10


class KeycloakClient:
    """HTTP client for Keycloak Admin API with automatic token management.

    Features:
    - Automatic token refresh when expired
    - Centralized error handling (4xx -> KeycloakAPIError, 5xx/network -> KeycloakUnavailableError)

    Usage:
        client = KeycloakClient("http://keycloak:8080/auth")
        client.authenticate_admin("admin", "password")
        response = client.get("/admin/realms/demo/users")
    """

    def __init__(self, base_url: str, timeout: float = REQUEST_TIMEOUT):
        """Initialize Keycloak client.

        Args:
            base_url: Keycloak base URL, including any relative path (e.g. /auth)
            timeout: per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._auth_params: Dict[str, Any] = {}

    def authenticate_admin(self, username: str, password: str, realm: str = "master") -> str:
        """Authenticate as admin user and store credentials for auto-refresh.

        Args:
            username: Admin username
            password: Admin password
            realm: Authentication realm (default: master)

        Returns:
            Access token
        """
        self._auth_params = {"username": username, "password": password, "realm": realm}
        token, expires_in = self._get_admin_token(username, password, realm)
        self._token = token
        self._token_expires_at = datetime.now() + timedelta(seconds=expires_in)
        return token

    def _ensure_authenticated(self) -> None:
        """Ensure we have a valid token, refreshing if necessary."""
        if not self._token or not self._token_expires_at:
            raise KeycloakAPIError(401, "Not authenticated - call authenticate_admin first", "")

        # Refresh if token expired or expiring soon (within 10 seconds)
        if datetime.now() >= self._token_expires_at - timedelta(seconds=10):
            token, expires_in = self._get_admin_token(
                self._auth_params["username"],
                self._auth_params["password"],
                self._auth_params["realm"],
            )
            self._token = token
            self._token_expires_at = datetime.now() + timedelta(seconds=expires_in)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        self._ensure_authenticated()
        url = f"{self.base_url}{path}"
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {self._token}"
        try:
            resp = requests.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise KeycloakUnavailableError(str(exc), url) from exc
        self._handle_error(resp)
        return resp

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> requests.Response:
        """Execute GET request with automatic authentication."""
        return self._request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        """Execute POST request with automatic authentication."""
        return self._request("POST", path, json=json, **kwargs)

    def put(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        """Execute PUT request with automatic authentication."""
        return self._request("PUT", path, json=json, **kwargs)

    def delete(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        """Execute DELETE request with automatic authentication.

        Role-mapping removal carries a JSON body, hence ``json``.
        """
        return self._request("DELETE", path, json=json, **kwargs)

    def _get_admin_token(self, username: str, password: str, realm: str = "master") -> tuple[str, int]:
        """Obtain an admin token via direct access grant."""
        url = f"{self.base_url}/realms/{realm}/protocol/openid-connect/token"
        data = {
            "grant_type": "password",
            "client_id": "admin-cli",
            "username": username,
            "password": password,
        }
        try:
            resp = requests.post(url, data=data, timeout=self.timeout)
        except requests.RequestException as exc:
            raise KeycloakUnavailableError(str(exc), url) from exc
        if resp.status_code != 200:
            self._handle_error(resp, url)
            raise KeycloakAPIError(resp.status_code, resp.text, url)
        payload = resp.json()
        return payload["access_token"], int(payload.get("expires_in", 60))

    def _handle_error(self, resp: requests.Response, endpoint: Optional[str] = None) -> None:
        """Centralized error handling for HTTP responses.

        Raises:
            KeycloakUnavailableError: 5xx
            KeycloakNotFoundError: 404
            KeycloakConflictError: 409
            KeycloakAPIError: any other status >= 400
        """
        endpoint = endpoint or resp.url
        if resp.status_code >= 500:
            raise KeycloakUnavailableError(resp.text, endpoint, resp.status_code)
        if resp.status_code == 404:
            raise KeycloakNotFoundError(resp.status_code, resp.text, endpoint)
        if resp.status_code == 409:
            raise KeycloakConflictError(resp.status_code, resp.text, endpoint)
        if resp.status_code >= 400:
            raise KeycloakAPIError(resp.status_code, resp.text, endpoint)
