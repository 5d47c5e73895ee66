"""Manifest loading for remote resource installation.

A manifest is a multi-document YAML (or JSON) file where each document
describes one API object (apiVersion, kind, metadata.name, ...). Documents
are separated by '---' lines and decoded independently, so one malformed
document is dropped with a warning instead of failing the whole load.

File order is preserved: it is the creation order for apply and, reversed,
the deletion order for delete.
"""

import copy
import logging
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional, TextIO, Union

import yaml

logger = logging.getLogger(__name__)

DOCUMENT_SEPARATOR = '---'

# Bounded hand-off between reader thread and decoder (pipelined mode)
PIPELINE_QUEUE_SIZE = 10

_END = object()

TIMESTAMP_TAG = 'tag:yaml.org,2002:timestamp'


class ManifestLoader(yaml.SafeLoader):
    """SafeLoader that keeps date-shaped scalars as strings.

    Documents are sent to the API server as JSON, which has no date type.
    """


ManifestLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != TIMESTAMP_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
ManifestLoader.add_constructor(TIMESTAMP_TAG, yaml.SafeLoader.construct_scalar)


class ManifestDecodeError(ValueError):
    """A single manifest document could not be decoded."""


@dataclass
class OwnerReference:
    """Back-link from a created object to its controlling object.

    Attributes:
        api_version: Owner's apiVersion (e.g., installer.dev/v1alpha1)
        kind: Owner's kind
        name: Owner's name
        uid: Owner's UID (required by the platform's garbage collector)
        controller: Mark the owner as the managing controller
        block_owner_deletion: Block foreground deletion of the owner
    """
    api_version: str
    kind: str
    name: str
    uid: str
    controller: Optional[bool] = None
    block_owner_deletion: Optional[bool] = None

    def to_dict(self) -> dict:
        """Convert to the platform's camelCase shape."""
        d: dict[str, Any] = {
            'apiVersion': self.api_version,
            'kind': self.kind,
            'name': self.name,
            'uid': self.uid,
        }
        if self.controller is not None:
            d['controller'] = self.controller
        if self.block_owner_deletion is not None:
            d['blockOwnerDeletion'] = self.block_owner_deletion
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'OwnerReference':
        return cls(
            api_version=data['apiVersion'],
            kind=data['kind'],
            name=data['name'],
            uid=data['uid'],
            controller=data.get('controller'),
            block_owner_deletion=data.get('blockOwnerDeletion'),
        )

    @classmethod
    def from_object(cls, obj: dict, controller: bool = True) -> 'OwnerReference':
        """Build an owner reference pointing at an existing API object."""
        metadata = obj.get('metadata') or {}
        return cls(
            api_version=obj['apiVersion'],
            kind=obj['kind'],
            name=metadata['name'],
            uid=metadata['uid'],
            controller=controller,
            block_owner_deletion=controller,
        )


class ManifestResource:
    """One API object description from a manifest.

    Wraps the decoded document. The document itself is never modified;
    with_owner() returns a copy for use as a create body.
    """

    def __init__(self, document: dict):
        self._document = document

    @property
    def document(self) -> dict:
        return self._document

    @property
    def metadata(self) -> dict:
        return self._document.get('metadata') or {}

    @property
    def api_version(self) -> str:
        return str(self._document.get('apiVersion') or '')

    @property
    def kind(self) -> str:
        return str(self._document.get('kind') or '')

    @property
    def name(self) -> str:
        return str(self.metadata.get('name') or '')

    @property
    def namespace(self) -> str:
        """Namespace, or '' for cluster-scoped resources."""
        return str(self.metadata.get('namespace') or '')

    @property
    def owner_references(self) -> list[dict]:
        return list(self.metadata.get('ownerReferences') or [])

    @property
    def key(self) -> str:
        """Unique key within a manifest: apiVersion/kind[/namespace]/name."""
        if self.namespace:
            return f"{self.api_version}/{self.kind}/{self.namespace}/{self.name}"
        return f"{self.api_version}/{self.kind}/{self.name}"

    @property
    def group_version_kind(self) -> str:
        """'apiVersion, Kind=kind'."""
        return f"{self.api_version}, Kind={self.kind}"

    @property
    def display_name(self) -> str:
        """Human-readable identifier: 'name (apiVersion, Kind=kind)'."""
        return f"{self.name} ({self.group_version_kind})"

    def with_owner(self, owner: OwnerReference) -> dict:
        """Return a copy of the document with owner appended to ownerReferences.

        An existing reference with the same UID is not duplicated.
        """
        body = copy.deepcopy(self._document)
        metadata = body.setdefault('metadata', {})
        refs = copy.deepcopy(self.owner_references)
        if not any(ref.get('uid') == owner.uid for ref in refs):
            refs.append(owner.to_dict())
        metadata['ownerReferences'] = refs
        return body

    def to_body(self) -> dict:
        """Return a copy of the document for use as a create body."""
        return copy.deepcopy(self._document)

    def __eq__(self, other) -> bool:
        if not isinstance(other, ManifestResource):
            return NotImplemented
        return self._document == other._document

    def __repr__(self) -> str:
        ns = f", namespace={self.namespace}" if self.namespace else ''
        return f"ManifestResource({self.kind}/{self.name}{ns})"


def _is_separator(line: str) -> bool:
    """True for a '---' document separator line ('--- # comment' included)."""
    if not line.startswith(DOCUMENT_SEPARATOR):
        return False
    rest = line[len(DOCUMENT_SEPARATOR):].strip()
    return not rest or rest.startswith('#')


def read_documents(stream: TextIO) -> Iterator[str]:
    """Split a text stream into raw document chunks on '---' lines.

    Chunks are yielded in file order. Empty chunks are yielded too so that
    document indexes in log messages match the file.
    """
    lines: list[str] = []
    for line in stream:
        if _is_separator(line):
            yield ''.join(lines)
            lines = []
            continue
        lines.append(line)
    yield ''.join(lines)


def decode_document(chunk: str) -> Optional[ManifestResource]:
    """Decode one raw document into a ManifestResource.

    Returns:
        ManifestResource, or None for an empty (or comment-only) document

    Raises:
        ManifestDecodeError: If the document is malformed, not an object,
            or lacks kind or metadata.name
    """
    try:
        data = yaml.load(chunk, Loader=ManifestLoader)
    except yaml.YAMLError as e:
        raise ManifestDecodeError(f"invalid YAML: {e}")
    except (ValueError, TypeError) as e:
        raise ManifestDecodeError(f"invalid value: {e}")

    if data is None:
        return None
    if not isinstance(data, dict):
        raise ManifestDecodeError(f"expected an object, got {type(data).__name__}")
    if not data.get('kind'):
        raise ManifestDecodeError("object 'kind' is missing")
    metadata = data.get('metadata')
    if not isinstance(metadata, dict) or not metadata.get('name'):
        raise ManifestDecodeError(f"{data['kind']} is missing metadata.name")
    return ManifestResource(data)


def _decode_all(chunks: Iterator[str], source: str) -> list[ManifestResource]:
    """Decode raw chunks in order, skipping (and logging) bad documents."""
    resources: list[ManifestResource] = []
    for index, chunk in enumerate(chunks):
        try:
            resource = decode_document(chunk)
        except ManifestDecodeError as e:
            logger.warning(f"Unable to decode document {index} in {source}; ignoring: {e}")
            continue
        if resource is None:
            logger.debug(f"Skipping empty document {index} in {source}")
            continue
        resources.append(resource)
    return resources


def _pipelined_chunks(stream: TextIO) -> Iterator[str]:
    """Read documents on a background thread, yield them through a bounded queue."""
    sink: queue.Queue = queue.Queue(maxsize=PIPELINE_QUEUE_SIZE)

    def _reader() -> None:
        try:
            for chunk in read_documents(stream):
                sink.put(chunk)
        except Exception as e:  # handed to the consumer and re-raised there
            sink.put(e)
        finally:
            sink.put(_END)

    thread = threading.Thread(target=_reader, name='manifest-reader', daemon=True)
    thread.start()
    while True:
        item = sink.get()
        if item is _END:
            break
        if isinstance(item, Exception):
            thread.join()
            raise item
        yield item
    thread.join()


def parse_manifest(path: Union[str, Path], pipelined: bool = False) -> list[ManifestResource]:
    """Parse a multi-document manifest file.

    Args:
        path: Path to the manifest file
        pipelined: Read on a background thread while decoding on this one

    Returns:
        Resources in file order

    Raises:
        OSError: If the file cannot be opened or read
    """
    path = Path(path)
    logger.info(f"Reading manifest {path}")
    with open(path, encoding='utf-8') as stream:
        chunks = _pipelined_chunks(stream) if pipelined else read_documents(stream)
        resources = _decode_all(chunks, str(path))
    logger.debug(f"Parsed {len(resources)} resources from {path}")
    return resources


class ManifestFile:
    """Ordered resources of one manifest file, parsed once and cached.

    Parsing happens on first access, so construction never touches the
    filesystem. A failed parse is not cached; the next access retries.
    """

    def __init__(self, path: Union[str, Path], pipelined: bool = False):
        self.path = Path(path)
        self.pipelined = pipelined
        self._resources: Optional[tuple[ManifestResource, ...]] = None

    @property
    def resources(self) -> tuple[ManifestResource, ...]:
        if self._resources is None:
            self._resources = tuple(parse_manifest(self.path, pipelined=self.pipelined))
        return self._resources

    def reload(self) -> tuple[ManifestResource, ...]:
        """Drop the cache and parse again."""
        self._resources = None
        return self.resources

    def __iter__(self) -> Iterator[ManifestResource]:
        return iter(self.resources)

    def __reversed__(self) -> Iterator[ManifestResource]:
        return reversed(self.resources)

    def __len__(self) -> int:
        return len(self.resources)

    def __repr__(self) -> str:
        return f"ManifestFile({self.path})"
