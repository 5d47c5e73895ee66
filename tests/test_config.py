#!/usr/bin/env python3
"""Tests for config.py - API server configuration discovery."""

import os
import sys
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest

from config import (
    ApiConfig,
    ConfigError,
    DEFAULT_UNOWNED_KINDS,
    get_install_version,
    get_manifest_path,
    get_state_dir,
    load_api_config,
    load_incluster_config,
    load_kube_config,
    load_unowned_kinds,
)


class TestApiConfig:
    """Test ApiConfig dataclass."""

    def test_requires_server(self):
        with pytest.raises(ConfigError, match='server URL is required'):
            ApiConfig(server='')

    def test_strips_trailing_slash(self):
        assert ApiConfig(server='https://198.51.100.10:6443/').server == 'https://198.51.100.10:6443'

    def test_verify_default(self):
        assert ApiConfig(server='https://x').verify is True

    def test_verify_with_ca(self):
        config = ApiConfig(server='https://x', ca_cert='/etc/ca.crt')
        assert config.ca_cert == Path('/etc/ca.crt')
        assert config.verify == '/etc/ca.crt'

    def test_verify_insecure_ignores_ca(self):
        config = ApiConfig(server='https://x', ca_cert='/etc/ca.crt', verify_tls=False)
        assert config.verify is False

    def test_cert_requires_both_parts(self):
        assert ApiConfig(server='https://x', client_cert='/c.crt').cert is None
        config = ApiConfig(server='https://x', client_cert='/c.crt', client_key='/c.key')
        assert config.cert == ('/c.crt', '/c.key')


class TestLoadKubeConfig:
    """Test kubeconfig loading."""

    def test_current_context(self, kubeconfig):
        config = load_kube_config(kubeconfig)

        assert config.server == 'https://198.51.100.10:6443'
        assert config.token == 'dev-token'
        assert config.namespace == 'knative-serving'
        assert config.ca_cert == kubeconfig.parent / 'ca.crt'
        assert config.verify_tls is True
        assert config.source == f'{kubeconfig}#dev'

    def test_named_context(self, kubeconfig):
        config = load_kube_config(kubeconfig, context='lab')

        assert config.server == 'https://198.51.100.20:6443'
        assert config.token == ''
        assert config.verify is False
        assert config.namespace == 'default'

    def test_inline_data_written_to_files(self, kubeconfig):
        with patch('config.atexit.register') as mock_register:
            config = load_kube_config(kubeconfig, context='lab')

        cert, key = config.cert
        assert Path(cert).read_bytes() == b'cert'
        assert Path(key).read_bytes() == b'key'

        # Run the registered exit hooks: the temp files go away
        assert mock_register.call_count == 2
        for call in mock_register.call_args_list:
            call.args[0](**call.kwargs)
        assert not Path(cert).exists()
        assert not Path(key).exists()

    def test_token_file(self, tmp_path):
        (tmp_path / 'token').write_text('file-token\n')
        path = tmp_path / 'kubeconfig'
        path.write_text("""
current-context: c
clusters:
  - name: k
    cluster:
      server: https://198.51.100.30:6443
users:
  - name: u
    user:
      tokenFile: token
contexts:
  - name: c
    context:
      cluster: k
      user: u
""")
        assert load_kube_config(path).token == 'file-token'

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match='Kubeconfig not found'):
            load_kube_config(tmp_path / 'nope')

    def test_unknown_context(self, kubeconfig):
        with pytest.raises(ConfigError, match="Context 'prod' not found"):
            load_kube_config(kubeconfig, context='prod')

    def test_no_current_context(self, tmp_path):
        path = tmp_path / 'kubeconfig'
        path.write_text("clusters: []\n")
        with pytest.raises(ConfigError, match='No context specified'):
            load_kube_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'kubeconfig'
        path.write_text("clusters: [unclosed\n")
        with pytest.raises(ConfigError, match='Invalid YAML'):
            load_kube_config(path)


class TestLoadInclusterConfig:
    """Test in-cluster service account loading."""

    @pytest.fixture
    def sa_dir(self, tmp_path):
        sa = tmp_path / 'serviceaccount'
        sa.mkdir()
        (sa / 'token').write_text('sa-token\n')
        (sa / 'namespace').write_text('knative-serving\n')
        (sa / 'ca.crt').write_text('---CA---\n')
        return sa

    def test_loads_service_account(self, sa_dir):
        env = {'KUBERNETES_SERVICE_HOST': '10.96.0.1', 'KUBERNETES_SERVICE_PORT': '6443'}
        with patch.dict(os.environ, env, clear=True):
            config = load_incluster_config(sa_dir)

        assert config.server == 'https://10.96.0.1:6443'
        assert config.token == 'sa-token'
        assert config.namespace == 'knative-serving'
        assert config.ca_cert == sa_dir / 'ca.crt'
        assert config.source == 'in-cluster'

    def test_ipv6_host(self, sa_dir):
        with patch.dict(os.environ, {'KUBERNETES_SERVICE_HOST': 'fd00::1'}, clear=True):
            config = load_incluster_config(sa_dir)
        assert config.server == 'https://[fd00::1]:443'

    def test_not_in_cluster(self, sa_dir):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigError, match='Not running in-cluster'):
                load_incluster_config(sa_dir)

    def test_missing_token(self, tmp_path):
        with patch.dict(os.environ, {'KUBERNETES_SERVICE_HOST': '10.96.0.1'}, clear=True):
            with pytest.raises(ConfigError, match='token not found'):
                load_incluster_config(tmp_path)


class TestLoadApiConfig:
    """Test configuration discovery order."""

    def test_explicit_path_wins(self, kubeconfig, tmp_path):
        with patch.dict(os.environ, {'KUBECONFIG': str(tmp_path / 'other')}, clear=True):
            config = load_api_config(str(kubeconfig), 'lab')
        assert config.server == 'https://198.51.100.20:6443'

    def test_kubeconfig_env_first_existing(self, kubeconfig, tmp_path):
        value = os.pathsep.join([str(tmp_path / 'missing'), str(kubeconfig)])
        with patch.dict(os.environ, {'KUBECONFIG': value}, clear=True):
            config = load_api_config()
        assert config.source == f'{kubeconfig}#dev'

    def test_kubeconfig_env_none_exist(self, tmp_path):
        with patch.dict(os.environ, {'KUBECONFIG': str(tmp_path / 'missing')}, clear=True):
            with pytest.raises(ConfigError, match='does not point to an existing file'):
                load_api_config()

    def test_incluster_before_home(self, tmp_path):
        sentinel = ApiConfig(server='https://10.96.0.1:443', source='in-cluster')
        with patch.dict(os.environ, {'KUBERNETES_SERVICE_HOST': '10.96.0.1'}, clear=True), \
                patch('config.load_incluster_config', return_value=sentinel) as mock_incluster:
            config = load_api_config()
        mock_incluster.assert_called_once()
        assert config is sentinel

    def test_home_kubeconfig(self, kubeconfig, tmp_path):
        kube_dir = tmp_path / 'home' / '.kube'
        kube_dir.mkdir(parents=True)
        (kube_dir / 'config').write_text(kubeconfig.read_text())
        with patch.dict(os.environ, {}, clear=True), \
                patch('config.Path.home', return_value=tmp_path / 'home'):
            config = load_api_config()
        assert config.token == 'dev-token'

    def test_nothing_found(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True), \
                patch('config.Path.home', return_value=tmp_path):
            with pytest.raises(ConfigError, match='No API configuration found'):
                load_api_config()


class TestEnvironmentSettings:
    """Test environment-driven settings."""

    def test_unowned_kinds_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert load_unowned_kinds() == DEFAULT_UNOWNED_KINDS

    def test_unowned_kinds_override(self):
        with patch.dict(os.environ, {'INSTALLER_UNOWNED_KINDS': 'Namespace, PriorityClass,'}, clear=True):
            assert load_unowned_kinds() == frozenset({'Namespace', 'PriorityClass'})

    def test_unowned_kinds_blank_uses_default(self):
        with patch.dict(os.environ, {'INSTALLER_UNOWNED_KINDS': ' , '}, clear=True):
            assert load_unowned_kinds() == DEFAULT_UNOWNED_KINDS

    def test_manifest_path(self):
        with patch.dict(os.environ, {}, clear=True):
            assert get_manifest_path() == '/tmp/manifest.yaml'
        with patch.dict(os.environ, {'INSTALLER_MANIFEST': '/etc/serving.yaml'}, clear=True):
            assert get_manifest_path() == '/etc/serving.yaml'

    def test_install_version(self):
        with patch.dict(os.environ, {}, clear=True):
            assert get_install_version() == 'UNKNOWN'
        with patch.dict(os.environ, {'INSTALL_VERSION': 'v0.4.0'}, clear=True):
            assert get_install_version() == 'v0.4.0'

    def test_state_dir(self, tmp_path):
        with patch.dict(os.environ, {'INSTALLER_STATE_DIR': str(tmp_path)}, clear=True):
            assert get_state_dir() == tmp_path
        with patch.dict(os.environ, {}, clear=True), \
                patch('config.get_base_dir', return_value=tmp_path):
            assert get_state_dir() == tmp_path / '.states'
