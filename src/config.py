"""API server configuration management.

Connection settings are loaded from one of:
- a kubeconfig file (clusters / users / contexts)
- the in-cluster service account mounted into a pod

Resolution order for load_api_config():
1. Explicit kubeconfig path (--kubeconfig)
2. $KUBECONFIG environment variable (first existing entry)
3. In-cluster service account ($KUBERNETES_SERVICE_HOST set)
4. ~/.kube/config
"""

import atexit
import base64
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml


class ConfigError(Exception):
    """Configuration error."""


# Kinds that never receive an owner reference. Cluster-scoped objects owned
# by a namespaced object are not reliably garbage collected.
DEFAULT_UNOWNED_KINDS = frozenset({
    'Namespace',
    'ClusterRole',
    'ClusterRoleBinding',
    'CustomResourceDefinition',
})

DEFAULT_MANIFEST_PATH = '/tmp/manifest.yaml'

# In-cluster service account mount
SERVICE_ACCOUNT_DIR = Path('/var/run/secrets/kubernetes.io/serviceaccount')


@dataclass
class ApiConfig:
    """Connection settings for the remote API server.

    Attributes:
        server: API server URL (e.g., https://198.51.100.10:6443)
        token: Bearer token (empty when using client certificates)
        ca_cert: Path to CA bundle for server verification
        client_cert: Path to client certificate (mTLS)
        client_key: Path to client key (mTLS)
        verify_tls: False when insecure-skip-tls-verify is set
        namespace: Default namespace from context or service account
        timeout: Per-request timeout in seconds
        source: Where the config was loaded from (for debugging)
    """
    server: str
    token: str = ''
    ca_cert: Optional[Path] = None
    client_cert: Optional[Path] = None
    client_key: Optional[Path] = None
    verify_tls: bool = True
    namespace: str = 'default'
    timeout: float = 30.0
    source: str = ''

    def __post_init__(self):
        if not self.server:
            raise ConfigError("API server URL is required")
        self.server = self.server.rstrip('/')
        for attr in ('ca_cert', 'client_cert', 'client_key'):
            value = getattr(self, attr)
            if isinstance(value, str):
                setattr(self, attr, Path(value))

    @property
    def verify(self):
        """Value for requests' verify= argument."""
        if not self.verify_tls:
            return False
        if self.ca_cert is not None:
            return str(self.ca_cert)
        return True

    @property
    def cert(self) -> Optional[tuple[str, str]]:
        """Value for requests' cert= argument."""
        if self.client_cert is not None and self.client_key is not None:
            return (str(self.client_cert), str(self.client_key))
        return None


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    with open(path, encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must be a YAML object (dict)")
    return data


def _named(entries: list, name: str, section: str, path: Path) -> dict:
    """Find a named entry in a kubeconfig section (clusters/users/contexts)."""
    for entry in entries or []:
        if entry.get('name') == name:
            return entry.get(section.rstrip('s')) or {}
    raise ConfigError(f"{section[:-1].capitalize()} '{name}' not found in {path}")


def _materialize(data: str, suffix: str) -> Path:
    """Write base64 kubeconfig *-data content to a private temp file.

    requests only accepts certificate paths, not in-memory PEM. The file is
    removed at interpreter exit.
    """
    fd, name = tempfile.mkstemp(prefix='kube-installer-', suffix=suffix)
    with os.fdopen(fd, 'wb') as f:
        f.write(base64.b64decode(data))
    path = Path(name)
    atexit.register(path.unlink, missing_ok=True)
    return path


def _resolve_file(value: Optional[str], base: Path) -> Optional[Path]:
    """Resolve a kubeconfig file reference relative to the kubeconfig location."""
    if not value:
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base / path
    return path


def load_kube_config(path: Path, context: Optional[str] = None) -> ApiConfig:
    """Load API config from a kubeconfig file.

    Args:
        path: Path to kubeconfig YAML
        context: Context name (default: current-context)

    Returns:
        ApiConfig for the selected context

    Raises:
        ConfigError: If the file is missing or the context is incomplete
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigError(f"Kubeconfig not found: {path}")

    try:
        data = _parse_yaml(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in kubeconfig {path}: {e}")

    context_name = context or data.get('current-context')
    if not context_name:
        raise ConfigError(f"No context specified and no current-context in {path}")

    ctx = _named(data.get('contexts'), context_name, 'contexts', path)
    cluster = _named(data.get('clusters'), ctx.get('cluster', ''), 'clusters', path)
    user = _named(data.get('users'), ctx.get('user', ''), 'users', path) if ctx.get('user') else {}

    base = path.parent

    ca_cert = _resolve_file(cluster.get('certificate-authority'), base)
    if ca_data := cluster.get('certificate-authority-data'):
        ca_cert = _materialize(ca_data, '.crt')

    client_cert = _resolve_file(user.get('client-certificate'), base)
    if cert_data := user.get('client-certificate-data'):
        client_cert = _materialize(cert_data, '.crt')

    client_key = _resolve_file(user.get('client-key'), base)
    if key_data := user.get('client-key-data'):
        client_key = _materialize(key_data, '.key')

    token = user.get('token', '')
    if not token and (token_file := user.get('tokenFile')):
        token = _resolve_file(token_file, base).read_text().strip()

    return ApiConfig(
        server=cluster.get('server', ''),
        token=token,
        ca_cert=ca_cert,
        client_cert=client_cert,
        client_key=client_key,
        verify_tls=not cluster.get('insecure-skip-tls-verify', False),
        namespace=ctx.get('namespace') or 'default',
        source=f"{path}#{context_name}",
    )


def load_incluster_config(sa_dir: Path = SERVICE_ACCOUNT_DIR) -> ApiConfig:
    """Load API config from the pod's service account.

    Raises:
        ConfigError: If not running inside a cluster
    """
    host = os.environ.get('KUBERNETES_SERVICE_HOST')
    port = os.environ.get('KUBERNETES_SERVICE_PORT', '443')
    if not host:
        raise ConfigError("Not running in-cluster: KUBERNETES_SERVICE_HOST is not set")

    token_file = sa_dir / 'token'
    if not token_file.exists():
        raise ConfigError(f"Service account token not found: {token_file}")

    # IPv6 service hosts need brackets in the URL
    if ':' in host:
        host = f'[{host}]'

    namespace = 'default'
    ns_file = sa_dir / 'namespace'
    if ns_file.exists():
        namespace = ns_file.read_text().strip() or 'default'

    ca_file = sa_dir / 'ca.crt'
    return ApiConfig(
        server=f'https://{host}:{port}',
        token=token_file.read_text().strip(),
        ca_cert=ca_file if ca_file.exists() else None,
        namespace=namespace,
        source='in-cluster',
    )


def load_api_config(kubeconfig: Optional[str] = None, context: Optional[str] = None) -> ApiConfig:
    """Discover API server configuration.

    Resolution order:
    1. kubeconfig argument
    2. $KUBECONFIG (first path that exists)
    3. In-cluster service account
    4. ~/.kube/config
    """
    if kubeconfig:
        return load_kube_config(Path(kubeconfig), context)

    if env_paths := os.environ.get('KUBECONFIG'):
        for entry in env_paths.split(os.pathsep):
            if entry and Path(entry).expanduser().exists():
                return load_kube_config(Path(entry), context)
        raise ConfigError(f"KUBECONFIG={env_paths} does not point to an existing file")

    if os.environ.get('KUBERNETES_SERVICE_HOST'):
        return load_incluster_config()

    default = Path.home() / '.kube' / 'config'
    if default.exists():
        return load_kube_config(default, context)

    raise ConfigError(
        "No API configuration found. "
        "Pass --kubeconfig, set KUBECONFIG, or run inside a cluster."
    )


def load_unowned_kinds() -> frozenset[str]:
    """Kinds exempt from owner references.

    $INSTALLER_UNOWNED_KINDS (comma-separated) replaces the default set.
    """
    if value := os.environ.get('INSTALLER_UNOWNED_KINDS'):
        kinds = frozenset(k.strip() for k in value.split(',') if k.strip())
        if kinds:
            return kinds
    return DEFAULT_UNOWNED_KINDS


def get_manifest_path() -> str:
    """Default manifest path ($INSTALLER_MANIFEST or /tmp/manifest.yaml)."""
    return os.environ.get('INSTALLER_MANIFEST', DEFAULT_MANIFEST_PATH)


def get_install_version() -> str:
    """Version reported in Install status ($INSTALL_VERSION)."""
    return os.environ.get('INSTALL_VERSION', 'UNKNOWN')


def get_base_dir() -> Path:
    """Get the kube-installer directory."""
    return Path(__file__).parent.parent  # src/ -> kube-installer/


def get_state_dir() -> Path:
    """Directory for persisted install state ($INSTALLER_STATE_DIR or .states/)."""
    if env_path := os.environ.get('INSTALLER_STATE_DIR'):
        return Path(env_path)
    return get_base_dir() / '.states'
