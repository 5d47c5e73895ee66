"""Dynamic API client for manifest resources.

The engine talks to any backend implementing DynamicClient. RestClient is
the production implementation over the Kubernetes REST API using requests.
"""

import logging
from typing import Optional, Protocol, runtime_checkable

import requests
import urllib3

from config import ApiConfig
from installer.endpoint import ResourceEndpoint

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Remote API call failed.

    Attributes:
        status: HTTP status code (0 for transport failures)
        reason: Machine-readable reason (e.g., NotFound, AlreadyExists)
        message: Human-readable message from the server
    """

    def __init__(self, status: int, reason: str, message: str):
        self.status = status
        self.reason = reason
        self.message = message
        super().__init__(f"{reason} ({status}): {message}")


class NotFoundError(RemoteError):
    """The requested object does not exist."""


class AlreadyExistsError(RemoteError):
    """An object with the same name already exists."""


@runtime_checkable
class DynamicClient(Protocol):
    """Protocol for remote object stores keyed by endpoint + name."""

    def get(self, endpoint: ResourceEndpoint, name: str) -> dict:
        """Fetch an object. Raises NotFoundError if absent."""

    def create(self, endpoint: ResourceEndpoint, body: dict) -> dict:
        """Create an object. Raises AlreadyExistsError on name collision."""

    def delete(self, endpoint: ResourceEndpoint, name: str) -> None:
        """Delete an object."""

    def list(self, endpoint: ResourceEndpoint) -> list[dict]:
        """List objects in the collection."""

    def update_status(self, endpoint: ResourceEndpoint, body: dict) -> dict:
        """Replace the status subresource of an object."""


def error_from_response(resp: requests.Response) -> RemoteError:
    """Map a non-2xx response to the RemoteError family.

    Uses the 'Status' body when the server sends one.
    """
    reason = ''
    message = resp.text[:200]
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get('kind') == 'Status':
        reason = data.get('reason', '')
        message = data.get('message', message)

    if resp.status_code == 404 or reason == 'NotFound':
        return NotFoundError(resp.status_code, reason or 'NotFound', message)
    if resp.status_code == 409 and reason in ('AlreadyExists', ''):
        return AlreadyExistsError(resp.status_code, 'AlreadyExists', message)
    return RemoteError(resp.status_code, reason or resp.reason or 'Unknown', message)


class RestClient:
    """DynamicClient over the Kubernetes REST API."""

    def __init__(self, config: ApiConfig, session: Optional[requests.Session] = None):
        """Initialize REST client.

        Args:
            config: API server connection settings
            session: Optional pre-built session (tests inject one)
        """
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        })
        if config.token:
            self.session.headers['Authorization'] = f'Bearer {config.token}'
        self.session.verify = config.verify
        if config.cert:
            self.session.cert = config.cert
        if not config.verify_tls:
            # Suppress SSL warnings for insecure-skip-tls-verify clusters
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def _request(self, method: str, path: str, body: Optional[dict] = None) -> dict:
        url = f'{self.config.server}{path}'
        logger.debug(f"{method} {url}")
        try:
            resp = self.session.request(method, url, json=body, timeout=self.config.timeout)
        except requests.exceptions.Timeout:
            raise RemoteError(0, 'Timeout', f"Timeout after {self.config.timeout}s: {method} {url}")
        except requests.exceptions.RequestException as e:
            raise RemoteError(0, 'ConnectionError', f"Cannot reach {self.config.server}: {e}")

        if not resp.ok:
            raise error_from_response(resp)
        if not resp.content:
            return {}
        return resp.json()

    def get(self, endpoint: ResourceEndpoint, name: str) -> dict:
        return self._request('GET', endpoint.item_path(name))

    def create(self, endpoint: ResourceEndpoint, body: dict) -> dict:
        return self._request('POST', endpoint.path, body)

    def delete(self, endpoint: ResourceEndpoint, name: str) -> None:
        self._request('DELETE', endpoint.item_path(name))

    def list(self, endpoint: ResourceEndpoint) -> list[dict]:
        data = self._request('GET', endpoint.path)
        return list(data.get('items') or [])

    def update_status(self, endpoint: ResourceEndpoint, body: dict) -> dict:
        name = (body.get('metadata') or {}).get('name', '')
        return self._request('PUT', f'{endpoint.item_path(name)}/status', body)
