"""Reconcile decision for Install custom resources.

An Install object requests that the manifest be applied in its namespace.
The watch loop that triggers reconcile() lives outside this package; this
module decides what a single reconcile pass does:

- Install gone: delete manifest resources (best-effort)
- Install already has status.resources: nothing to do
- Otherwise: apply with the Install as owner, then record status
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from config import get_install_version
from installer.client import AlreadyExistsError, DynamicClient, NotFoundError, RemoteError
from installer.endpoint import ResourceEndpoint
from installer.engine import ManifestEngine
from manifest import OwnerReference

logger = logging.getLogger(__name__)

INSTALL_GROUP = 'installer.dev'
INSTALL_VERSION = 'v1alpha1'
INSTALL_KIND = 'Install'
INSTALL_RESOURCE = 'installs'
AUTO_INSTALL_NAME = 'auto-install'


def install_endpoint(namespace: str) -> ResourceEndpoint:
    """Collection endpoint for Install objects in a namespace."""
    return ResourceEndpoint(INSTALL_GROUP, INSTALL_VERSION, INSTALL_RESOURCE, namespace)


@dataclass
class ReconcileResult:
    """Outcome of one reconcile pass.

    Attributes:
        action: deleted, skipped, or applied
        resources: Identifiers written to status (applied only)
        version: Version written to status (applied only)
    """
    action: str
    resources: list[str] = field(default_factory=list)
    version: Optional[str] = None


class InstallReconciler:
    """Reconciles Install objects against one manifest engine."""

    def __init__(
        self,
        client: DynamicClient,
        engine: ManifestEngine,
        version: Optional[str] = None,
    ):
        """Initialize reconciler.

        Args:
            client: Dynamic client used to read and update Install objects
            engine: Engine for the manifest being installed
            version: Version reported in status (default: $INSTALL_VERSION)
        """
        self.client = client
        self.engine = engine
        self.version = version or get_install_version()

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one reconcile pass for the Install namespace/name.

        Raises:
            RemoteError: If reading the Install, applying, or updating
                status fails. The caller should requeue.
            ResolutionError: If a manifest resource cannot be resolved
        """
        endpoint = install_endpoint(namespace)
        logger.info(f"Reconciling Install {namespace}/{name}")

        try:
            instance = self.client.get(endpoint, name)
        except NotFoundError:
            # Owned objects are garbage collected by the platform; the rest
            # (cluster-scoped, unowned) are removed here.
            logger.info(f"Install {namespace}/{name} not found, deleting manifest resources")
            self.engine.delete()
            return ReconcileResult(action='deleted')

        status = instance.get('status') or {}
        if status.get('resources') is not None:
            logger.debug(f"Install {namespace}/{name} already applied")
            return ReconcileResult(action='skipped', resources=list(status['resources']))

        owner = OwnerReference.from_object(instance)
        self.engine.apply(owner)

        resources = self.engine.resource_names()
        instance['status'] = dict(status, resources=resources, version=self.version)
        try:
            self.client.update_status(endpoint, instance)
        except RemoteError as e:
            logger.error(f"Failed to update status of Install {namespace}/{name}: {e}")
            raise

        return ReconcileResult(action='applied', resources=resources, version=self.version)


def auto_install(client: DynamicClient, namespace: str) -> bool:
    """Create an Install named 'auto-install' if none exist in namespace.

    Errors are logged, not raised.

    Returns:
        True if an Install exists or was created
    """
    endpoint = install_endpoint(namespace)
    try:
        installs = client.list(endpoint)
    except RemoteError as e:
        logger.error(f"Unable to list Installs in {namespace}: {e}")
        return False

    if installs:
        logger.debug(f"{len(installs)} Install(s) already present in {namespace}")
        return True

    body = {
        'apiVersion': f'{INSTALL_GROUP}/{INSTALL_VERSION}',
        'kind': INSTALL_KIND,
        'metadata': {'name': AUTO_INSTALL_NAME, 'namespace': namespace},
    }
    try:
        client.create(endpoint, body)
    except AlreadyExistsError:
        return True
    except RemoteError as e:
        logger.error(f"Unable to create Install {namespace}/{AUTO_INSTALL_NAME}: {e}")
        return False

    logger.info(f"Created Install {namespace}/{AUTO_INSTALL_NAME}")
    return True
