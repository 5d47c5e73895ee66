"""Install state for manifest apply/delete.

Tracks per-resource status (pending, running, exists, created, failed,
deleted) so callers can report which resources were applied. State can be
persisted to disk as JSON for the CLI's status output.
"""

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Statuses that count as applied for status reporting
APPLIED_STATUSES = ('exists', 'created')


@dataclass
class ResourceState:
    """Per-resource state.

    Attributes:
        key: Unique resource key (apiVersion/kind[/namespace]/name)
        identifier: Resource display name ('name (apiVersion, Kind=kind)')
        status: pending, running, exists, created, failed, deleted
        endpoint: Resolved collection endpoint, once known
        started_at: Timestamp when processing started
        completed_at: Timestamp when processing completed
        error: Error message if failed
    """
    key: str
    identifier: str
    status: str = 'pending'
    endpoint: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None

    def start(self, endpoint: Optional[str] = None) -> None:
        self.status = 'running'
        self.started_at = time.time()
        if endpoint is not None:
            self.endpoint = endpoint

    def mark_exists(self) -> None:
        self.status = 'exists'
        self.completed_at = time.time()

    def mark_created(self) -> None:
        self.status = 'created'
        self.completed_at = time.time()

    def fail(self, error: str) -> None:
        self.status = 'failed'
        self.completed_at = time.time()
        self.error = error

    def mark_deleted(self) -> None:
        self.status = 'deleted'
        self.completed_at = time.time()

    @property
    def applied(self) -> bool:
        return self.status in APPLIED_STATUSES

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'key': self.key,
            'identifier': self.identifier,
            'status': self.status,
        }
        if self.endpoint is not None:
            d['endpoint'] = self.endpoint
        if self.started_at is not None:
            d['started_at'] = self.started_at
        if self.completed_at is not None:
            d['completed_at'] = self.completed_at
        if self.error is not None:
            d['error'] = self.error
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'ResourceState':
        return cls(
            key=data['key'],
            identifier=data['identifier'],
            status=data.get('status', 'pending'),
            endpoint=data.get('endpoint'),
            started_at=data.get('started_at'),
            completed_at=data.get('completed_at'),
            error=data.get('error'),
        )


class InstallState:
    """Manifest-level state of one apply or delete run.

    Resources are kept in manifest order regardless of processing order.
    """

    def __init__(self, manifest_path: str, operation: str):
        """Initialize install state.

        Args:
            manifest_path: Path of the manifest being processed
            operation: 'apply' or 'delete'
        """
        self.manifest_path = manifest_path
        self.operation = operation
        self._resources: dict[str, ResourceState] = {}
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

    def add_resource(self, key: str, identifier: str) -> ResourceState:
        """Register a resource for tracking."""
        state = ResourceState(key=key, identifier=identifier)
        self._resources[key] = state
        return state

    def get_resource(self, key: str) -> ResourceState:
        """Get resource state by key.

        Raises:
            KeyError: If resource not registered
        """
        return self._resources[key]

    @property
    def resources(self) -> dict[str, ResourceState]:
        return dict(self._resources)

    @property
    def applied(self) -> list[str]:
        """Identifiers of resources that exist remotely after apply."""
        return [s.identifier for s in self._resources.values() if s.applied]

    @property
    def created(self) -> list[str]:
        """Identifiers of resources created by this run."""
        return [s.identifier for s in self._resources.values() if s.status == 'created']

    def start(self) -> None:
        self.started_at = time.time()

    def finish(self) -> None:
        self.completed_at = time.time()

    def to_dict(self) -> dict:
        return {
            'manifest_path': self.manifest_path,
            'operation': self.operation,
            'started_at': self.started_at,
            'completed_at': self.completed_at,
            'resources': [state.to_dict() for state in self._resources.values()],
        }

    def save(self, path: Path) -> Path:
        """Save state to a JSON file.

        Returns:
            Path where state was saved
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.debug(f"Saved install state to {path}")
        return path

    @classmethod
    def load(cls, path: Path) -> 'InstallState':
        """Load state from a JSON file.

        Raises:
            FileNotFoundError: If state file doesn't exist
        """
        with open(path, encoding='utf-8') as f:
            data = json.load(f)

        state = cls(data['manifest_path'], data.get('operation', 'apply'))
        state.started_at = data.get('started_at')
        state.completed_at = data.get('completed_at')
        for item in data.get('resources', []):
            resource_state = ResourceState.from_dict(item)
            state._resources[resource_state.key] = resource_state

        logger.debug(f"Loaded install state from {path}")
        return state
