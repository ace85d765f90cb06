"""LPK registry HTTP client.

This module handles:
- Uploading built artifacts to the registry
- Deleting previously uploaded artifacts
- Listing registry users and verifying the configured owner

Registry API:
    POST   /v1/lpks          multipart (uid, name, version, file)
    DELETE /v1/lpks/{id}
    GET    /v1/users
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, Any

import httpx

from lpkbuild.config import get_settings
from lpkbuild.errors import (
    ConfigError,
    DeleteError,
    RegistryError,
    RegistryNotFoundError,
    UploadError,
)
from lpkbuild.types import UploadRecord

if TYPE_CHECKING:
    from lpkbuild.config import Settings

logger = logging.getLogger(__name__)

# Default timeout for registry requests (seconds)
DEFAULT_TIMEOUT = 30.0

LPKS_PATH = "/v1/lpks"
USERS_PATH = "/v1/users"


@dataclass(frozen=True)
class RegistryUser:
    """A registry user."""

    uid: str
    nickname: str = ""


class RegistryClient:
    """Client for the LPK registry API.

    Can be used as a context manager to close the underlying HTTP client.
    """

    def __init__(
        self,
        endpoint: str,
        user: str | None = None,
        username: str | None = None,
        password: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize RegistryClient.

        Args:
            endpoint: Base URL of the registry API (may include a path prefix).
            user: Registry UID that owns uploads.
            username: HTTP basic auth username.
            password: HTTP basic auth password.
            timeout: Request timeout in seconds.
            http_client: Optional preconfigured HTTPX client.

        Raises:
            ConfigError: If the endpoint is empty or not an http(s) URL.
        """
        if not endpoint:
            raise ConfigError("registry endpoint is required")
        base_url = httpx.URL(endpoint)
        if base_url.scheme not in ("http", "https"):
            raise ConfigError(f"invalid registry endpoint: {endpoint}")

        self.base_url = base_url
        self.user = user
        self.timeout = timeout
        self._auth = httpx.BasicAuth(username or "", password or "")
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=timeout)

    def __enter__(self) -> RegistryClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            self._client.close()

    def build_url(self, path: str) -> str:
        """Join an API path onto the endpoint, keeping any path prefix."""
        prefix = self.base_url.path.rstrip("/")
        return str(self.base_url.copy_with(path=prefix + path))

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = self.build_url(path)
        try:
            response = self._client.request(
                method, url, auth=self._auth, timeout=self.timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            raise RegistryError(f"api {method} {path}: timeout", code="timeout") from e
        except httpx.RequestError as e:
            raise RegistryError(
                f"api {method} {path}: {e}", code="network_error"
            ) from e

        if response.status_code == httpx.codes.NOT_FOUND:
            raise RegistryNotFoundError(
                f"api {method} {path}: resource not found", status_code=404
            )
        if response.status_code >= 300:
            raise RegistryError(
                f"api {method} {path}: {response.text.strip()}",
                status_code=response.status_code,
            )
        return response

    def upload_lpk(
        self,
        user: str,
        name: str,
        version: str,
        file_path: Path,
    ) -> UploadRecord:
        """Upload an artifact.

        Args:
            user: Owner UID.
            name: Upload name.
            version: Upload version.
            file_path: Artifact to upload.

        Returns:
            UploadRecord describing the upload.

        Raises:
            UploadError: If the upload fails for any reason.
        """
        if not user:
            raise UploadError("user uid is not configured")

        logger.info("Uploading %s as %s@%s", file_path.name, name, version)
        try:
            with file_path.open("rb") as f:
                response = self._request(
                    "POST",
                    LPKS_PATH,
                    data={"uid": user, "name": name, "version": version},
                    files={"file": (file_path.name, f, "application/octet-stream")},
                )
            payload = response.json()
        except RegistryError as e:
            raise UploadError(
                f"upload error: {e}", status_code=e.status_code
            ) from e
        except (OSError, ValueError) as e:
            raise UploadError(f"upload error: {e}") from e

        if not isinstance(payload, dict) or not payload.get("id"):
            raise UploadError(f"upload error: unexpected response payload: {payload!r}")

        record = UploadRecord(
            upload_id=str(payload["id"]),
            download_url=str(payload.get("download_url") or ""),
            sha256=str(payload.get("sha256") or ""),
            version=str(payload.get("version") or ""),
        )
        logger.info("Uploaded %s (id=%s)", file_path.name, record.upload_id)
        return record

    def delete_lpk(self, upload_id: str) -> None:
        """Delete an uploaded artifact.

        Raises:
            RegistryNotFoundError: If the upload no longer exists.
            DeleteError: For any other failure.
        """
        try:
            self._request("DELETE", f"{LPKS_PATH}/{upload_id}")
        except RegistryNotFoundError:
            raise
        except RegistryError as e:
            raise DeleteError(
                f"delete upload {upload_id}: {e}", status_code=e.status_code
            ) from e
        logger.info("Deleted upload %s", upload_id)

    def list_users(self) -> list[RegistryUser]:
        """List registry users.

        Accepts either a list of ``{uid, nickname}`` objects or a list of
        bare UID strings.

        Raises:
            RegistryError: If the request fails or the payload is unexpected.
        """
        response = self._request("GET", USERS_PATH)
        try:
            payload = response.json()
        except ValueError as e:
            raise RegistryError(f"unexpected users payload: {response.text}") from e

        if not isinstance(payload, list):
            raise RegistryError(f"unexpected users payload: {response.text}")

        users: list[RegistryUser] = []
        for item in payload:
            if isinstance(item, str):
                users.append(RegistryUser(uid=item))
            elif isinstance(item, dict) and "uid" in item:
                users.append(
                    RegistryUser(
                        uid=str(item["uid"]), nickname=str(item.get("nickname") or "")
                    )
                )
            else:
                raise RegistryError(f"unexpected users payload: {response.text}")
        return users

    def verify_user(self, uid: str) -> None:
        """Check that a UID exists in the registry.

        Raises:
            ConfigError: If the user is not listed.
        """
        if not any(u.uid == uid for u in self.list_users()):
            raise ConfigError(f"User {uid} not found")


def client_from_settings(settings: Settings | None = None) -> RegistryClient:
    """Create a registry client from settings.

    Args:
        settings: Application settings.

    Returns:
        Configured RegistryClient.

    Raises:
        ConfigError: If endpoint or user is missing, or the user is unknown.
    """
    if settings is None:
        settings = get_settings()
    if not settings.registry_endpoint or not settings.registry_user:
        raise ConfigError(
            "registry endpoint and user must be provided "
            "(LPK_REGISTRY_ENDPOINT, LPK_REGISTRY_USER)"
        )

    password = (
        settings.registry_password.get_secret_value()
        if settings.registry_password is not None
        else None
    )
    client = RegistryClient(
        settings.registry_endpoint,
        user=settings.registry_user,
        username=settings.registry_username,
        password=password,
        timeout=settings.http_timeout,
    )
    if settings.verify_user:
        try:
            client.verify_user(settings.registry_user)
        except Exception:
            client.close()
            raise
    return client


__all__ = [
    "DEFAULT_TIMEOUT",
    "RegistryClient",
    "RegistryUser",
    "client_from_settings",
]
