"""Manifest engine: idempotent apply and reverse-order delete.

Walks the manifest resources in file order, creating each one that does not
exist yet. Delete walks the same resources in reverse and never fails on
remote errors, since it runs as best-effort cleanup.

Only namespace-scoped kinds get the owner reference. Cluster-scoped kinds in
the unowned set are left untagged because garbage collection of
cluster-scoped objects owned by a namespaced owner is unreliable.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional, Union

from config import ApiConfig, DEFAULT_UNOWNED_KINDS, load_unowned_kinds
from installer.client import (
    AlreadyExistsError,
    DynamicClient,
    NotFoundError,
    RemoteError,
    RestClient,
)
from installer.endpoint import ResolutionError, resolve_endpoint
from installer.state import InstallState, ResourceState
from manifest import ManifestFile, ManifestResource, OwnerReference

logger = logging.getLogger(__name__)


class ManifestEngine:
    """Applies and deletes the resources of one manifest file.

    A single engine must not run apply() and delete() concurrently; the
    caller serializes calls per installation.

    Attributes:
        manifest: Parsed (cached) manifest resources
        client: Remote dynamic API
        unowned_kinds: Kinds never tagged with the owner reference
        state: InstallState of the last apply/delete (None before the first)
        state_path: If set, state is saved there after every operation
        logger: Injected logger (default: module logger)
    """

    def __init__(
        self,
        manifest: Union[ManifestFile, str, Path],
        client: DynamicClient,
        unowned_kinds: Iterable[str] = DEFAULT_UNOWNED_KINDS,
        log: Optional[logging.Logger] = None,
        state_path: Optional[Path] = None,
    ):
        if not isinstance(manifest, ManifestFile):
            manifest = ManifestFile(manifest)
        self.manifest = manifest
        self.client = client
        self.unowned_kinds = frozenset(unowned_kinds)
        self.logger = log or logger
        self.state_path = state_path
        self.state: Optional[InstallState] = None

    @classmethod
    def from_config(
        cls,
        manifest_path: Union[str, Path],
        api_config: ApiConfig,
        pipelined: bool = False,
        **kwargs,
    ) -> 'ManifestEngine':
        """Build an engine talking to the API server described by api_config."""
        kwargs.setdefault('unowned_kinds', load_unowned_kinds())
        return cls(
            ManifestFile(manifest_path, pipelined=pipelined),
            RestClient(api_config),
            **kwargs,
        )

    @property
    def resources(self) -> tuple[ManifestResource, ...]:
        """Manifest resources in file order (parsed on first access)."""
        return self.manifest.resources

    @property
    def applied(self) -> list[str]:
        """Identifiers applied by the last apply() (partial if it failed)."""
        if self.state is None or self.state.operation != 'apply':
            return []
        return self.state.applied

    def resource_names(self) -> list[str]:
        """Identifiers of every resource in the manifest, in file order."""
        return [r.display_name for r in self.resources]

    def should_own(self, resource: ManifestResource) -> bool:
        """True if resource gets the owner reference."""
        return resource.kind not in self.unowned_kinds

    def apply(self, owner: Optional[OwnerReference] = None) -> list[str]:
        """Create every manifest resource that does not exist yet.

        Args:
            owner: Owner reference attached to namespace-scoped resources

        Returns:
            Identifiers of all resources present after apply, in file order

        Raises:
            OSError: If the manifest cannot be read
            ResolutionError: If a resource's apiVersion is unparsable
            RemoteError: If an existence check or create fails (other than
                not-found / already-exists). Earlier creations are kept.
        """
        state = self._new_state('apply')
        try:
            for resource in self.resources:
                self._apply_resource(resource, owner, state.get_resource(resource.key))
        finally:
            self._finish(state)

        self.logger.info(
            f"Applied {len(state.applied)} resources from {self.manifest.path} "
            f"({len(state.created)} created)"
        )
        return state.applied

    def delete(self) -> None:
        """Delete manifest resources in reverse file order.

        Remote errors are logged and ignored; deletion continues with the
        next resource.

        Raises:
            OSError: If the manifest cannot be read
            ResolutionError: If a resource's apiVersion is unparsable
        """
        state = self._new_state('delete')
        try:
            for resource in reversed(self.resources):
                self._delete_resource(resource, state.get_resource(resource.key))
        finally:
            self._finish(state)

    def _new_state(self, operation: str) -> InstallState:
        resources = self.resources
        state = InstallState(str(self.manifest.path), operation)
        for resource in resources:
            state.add_resource(resource.key, resource.display_name)
        self.state = state
        state.start()
        return state

    def _finish(self, state: InstallState) -> None:
        state.finish()
        if self.state_path is not None:
            state.save(self.state_path)

    def _apply_resource(
        self,
        resource: ManifestResource,
        owner: Optional[OwnerReference],
        rs: ResourceState,
    ) -> None:
        try:
            endpoint = resolve_endpoint(resource)
        except ResolutionError as e:
            rs.fail(str(e))
            raise

        rs.start(str(endpoint))
        try:
            self.client.get(endpoint, resource.name)
        except NotFoundError:
            pass
        except RemoteError as e:
            rs.fail(str(e))
            self.logger.error(f"Existence check failed for {resource.display_name}: {e}")
            raise
        else:
            rs.mark_exists()
            self.logger.debug(f"Resource {resource.display_name} already exists")
            return

        if owner is not None and self.should_own(resource):
            body = resource.with_owner(owner)
        else:
            body = resource.to_body()

        try:
            self.client.create(endpoint, body)
        except AlreadyExistsError:
            # Created concurrently by someone else
            rs.mark_exists()
            self.logger.debug(f"Resource {resource.display_name} created concurrently")
            return
        except RemoteError as e:
            rs.fail(str(e))
            self.logger.error(f"Create failed for {resource.display_name}: {e}")
            raise

        rs.mark_created()
        self.logger.info(f"Created resource {resource.kind} {resource.name}")

    def _delete_resource(self, resource: ManifestResource, rs: ResourceState) -> None:
        try:
            endpoint = resolve_endpoint(resource)
        except ResolutionError as e:
            rs.fail(str(e))
            raise

        rs.start(str(endpoint))
        try:
            self.client.delete(endpoint, resource.name)
        except NotFoundError:
            rs.mark_deleted()
            self.logger.debug(f"Resource {resource.display_name} already gone")
        except RemoteError as e:
            rs.fail(str(e))
            self.logger.warning(f"Delete failed for {resource.display_name}; ignoring: {e}")
        else:
            rs.mark_deleted()
            self.logger.info(f"Deleted resource {resource.kind} {resource.name}")

    def preview_apply(self, owner: Optional[OwnerReference] = None) -> None:
        """Preview apply operations without remote calls."""
        print("")
        print("=" * 65)
        print(f"  DRY-RUN APPLY: {self.manifest.path}")
        if owner is not None:
            print(f"  Owner: {owner.kind}/{owner.name} ({owner.uid})")
        print("=" * 65)
        print("")
        for index, resource in enumerate(self.resources):
            owned = owner is not None and self.should_own(resource)
            print(f"  [{index}] {resource.display_name}")
            print(f"      endpoint={self._describe_endpoint(resource)} owned={'yes' if owned else 'no'}")
        print("")

    def preview_delete(self) -> None:
        """Preview delete operations without remote calls."""
        print("")
        print("=" * 65)
        print(f"  DRY-RUN DELETE: {self.manifest.path}")
        print("=" * 65)
        print("")
        count = len(self.resources)
        for offset, resource in enumerate(reversed(self.resources)):
            print(f"  [{count - offset - 1}] {resource.display_name}: delete")
            print(f"      endpoint={self._describe_endpoint(resource)}")
        print("")

    @staticmethod
    def _describe_endpoint(resource: ManifestResource) -> str:
        try:
            return resolve_endpoint(resource).path
        except ResolutionError as e:
            return f"<unresolvable: {e}>"
