"""Endpoint resolution for manifest resources.

Maps a resource's apiVersion + kind + namespace to the REST collection it
lives in (group/version/resource, optionally namespaced).
"""

from dataclasses import dataclass
from urllib.parse import quote

from manifest import ManifestResource


class ResolutionError(ValueError):
    """A resource's apiVersion cannot be resolved to a group/version."""


def parse_group_version(api_version: str) -> tuple[str, str]:
    """Split an apiVersion into (group, version).

    'v1' is the core group ('', 'v1'); 'apps/v1' is ('apps', 'v1').

    Raises:
        ResolutionError: If empty or containing more than one '/'
    """
    if not api_version:
        raise ResolutionError("apiVersion is empty")
    parts = api_version.split('/')
    if len(parts) == 1:
        return '', parts[0]
    if len(parts) == 2 and parts[1]:
        return parts[0], parts[1]
    raise ResolutionError(f"unexpected GroupVersion string: {api_version}")


def pluralize(kind: str) -> str:
    """Derive the collection resource name from a kind.

    Heuristic, not API discovery: exact for built-in kinds, wrong for
    irregular plurals.
    """
    ret = kind.lower()
    if ret.endswith('s'):
        return f'{ret}es'
    if ret.endswith('policy'):
        return f'{ret[:-1]}ies'
    return f'{ret}s'


@dataclass(frozen=True)
class ResourceEndpoint:
    """Addressable collection for one group/version/resource.

    Attributes:
        group: API group ('' for core)
        version: API version
        resource: Plural resource name
        namespace: Namespace ('' for cluster-scoped)
    """
    group: str
    version: str
    resource: str
    namespace: str = ''

    @property
    def group_version(self) -> str:
        return f'{self.group}/{self.version}' if self.group else self.version

    @property
    def namespaced(self) -> bool:
        return bool(self.namespace)

    @property
    def path(self) -> str:
        """REST path of the collection."""
        prefix = f'/apis/{self.group}/{self.version}' if self.group else f'/api/{self.version}'
        if self.namespace:
            prefix = f'{prefix}/namespaces/{quote(self.namespace, safe="")}'
        return f'{prefix}/{self.resource}'

    def item_path(self, name: str) -> str:
        """REST path of one named object in the collection."""
        return f'{self.path}/{quote(name, safe="")}'

    def __str__(self) -> str:
        scope = f' in {self.namespace}' if self.namespace else ''
        return f'{self.group_version}/{self.resource}{scope}'


def resolve_endpoint(resource: ManifestResource) -> ResourceEndpoint:
    """Resolve a manifest resource to its collection endpoint.

    Raises:
        ResolutionError: If the apiVersion is unparsable
    """
    try:
        group, version = parse_group_version(resource.api_version)
    except ResolutionError as e:
        raise ResolutionError(f"{resource.kind} '{resource.name}': {e}")
    return ResourceEndpoint(
        group=group,
        version=version,
        resource=pluralize(resource.kind),
        namespace=resource.namespace,
    )
