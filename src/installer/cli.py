"""CLI handlers for manifest and install verbs.

Usage:
    kube-installer manifest apply -f <manifest> [--owner-name N --owner-uid U ...] [--dry-run] [--json-output]
    kube-installer manifest delete -f <manifest> [--yes] [--dry-run] [--json-output]
    kube-installer manifest resources -f <manifest> [--json-output]
    kube-installer install reconcile -f <manifest> --name <install> [--namespace NS] [--install]
"""

import argparse
import json
import logging
import sys
import time

from config import ConfigError, get_manifest_path, get_state_dir, load_api_config
from installer.client import RemoteError
from installer.endpoint import ResolutionError
from installer.engine import ManifestEngine
from installer.reconciler import InstallReconciler, auto_install
from manifest import ManifestFile, OwnerReference

logger = logging.getLogger(__name__)


def _common_parser(prog: str, description: str) -> argparse.ArgumentParser:
    """Build argument parser with common options for all verbs."""
    parser = argparse.ArgumentParser(prog=f'kube-installer {prog}', description=description)
    parser.add_argument(
        '--filename', '-f',
        default=get_manifest_path(),
        help='Manifest file containing the resources (default: %(default)s)',
    )
    parser.add_argument(
        '--kubeconfig',
        help='Path to kubeconfig (default: $KUBECONFIG, in-cluster, ~/.kube/config)',
    )
    parser.add_argument(
        '--context',
        help='Kubeconfig context (default: current-context)',
    )
    parser.add_argument(
        '--pipelined',
        action='store_true',
        help='Read the manifest on a background thread while decoding',
    )
    parser.add_argument(
        '--save-state',
        action='store_true',
        help='Persist per-resource status to the state directory',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    return parser


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _build_engine(args) -> ManifestEngine:
    """Build engine from parsed args.

    Raises:
        SystemExit: On configuration errors
    """
    try:
        api_config = load_api_config(args.kubeconfig, args.context)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    state_path = None
    if args.save_state:
        manifest_name = ManifestFile(args.filename).path.stem
        state_path = get_state_dir() / manifest_name / 'install.json'

    logger.debug(f"Using API server {api_config.server} ({api_config.source})")
    return ManifestEngine.from_config(
        args.filename,
        api_config,
        pipelined=args.pipelined,
        state_path=state_path,
    )


def _build_owner(args):
    """Build OwnerReference from --owner-* flags, or None if not given."""
    if not args.owner_name and not args.owner_uid:
        return None
    if not args.owner_name or not args.owner_uid:
        print("Error: --owner-name and --owner-uid must be given together", file=sys.stderr)
        sys.exit(1)
    return OwnerReference(
        api_version=args.owner_api_version,
        kind=args.owner_kind,
        name=args.owner_name,
        uid=args.owner_uid,
        controller=True,
        block_owner_deletion=True,
    )


def _emit_json(verb: str, success: bool, engine: ManifestEngine, duration: float, error: str = '') -> None:
    """Emit structured JSON output."""
    resources = []
    if engine.state is not None:
        for rs in engine.state.resources.values():
            item = {'identifier': rs.identifier, 'status': rs.status}
            if rs.endpoint is not None:
                item['endpoint'] = rs.endpoint
            if rs.duration is not None:
                item['duration'] = round(rs.duration, 3)
            if rs.error is not None:
                item['error'] = rs.error
            resources.append(item)

    output = {
        'verb': verb,
        'success': success,
        'duration_seconds': round(duration, 2),
        'manifest': str(engine.manifest.path),
        'applied': engine.applied,
        'resources': resources,
    }
    if error:
        output['error'] = error
    print(json.dumps(output, indent=2))


def apply_main(argv: list) -> int:
    """Handle 'manifest apply' verb."""
    parser = _common_parser('manifest apply', 'Create missing resources from a manifest')
    parser.add_argument('--owner-api-version', default='installer.dev/v1alpha1',
                        help='Owner apiVersion (default: %(default)s)')
    parser.add_argument('--owner-kind', default='Install',
                        help='Owner kind (default: %(default)s)')
    parser.add_argument('--owner-name', help='Owner name')
    parser.add_argument('--owner-uid', help='Owner UID')
    parser.add_argument('--dry-run', action='store_true',
                        help='Preview operations without executing')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    owner = _build_owner(args)
    engine = _build_engine(args)

    if args.dry_run:
        try:
            engine.preview_apply(owner)
        except OSError as e:
            print(f"Error reading manifest: {e}", file=sys.stderr)
            return 1
        return 0

    logger.info(f"Applying resources from {args.filename}")
    start = time.time()
    error = ''
    try:
        engine.apply(owner)
    except OSError as e:
        error = f"Error reading manifest: {e}"
    except (ResolutionError, RemoteError) as e:
        error = f"Apply failed: {e}"
    duration = time.time() - start

    if error:
        logger.error(error)
    if args.json_output:
        _emit_json('apply', not error, engine, duration, error)

    return 1 if error else 0


def delete_main(argv: list) -> int:
    """Handle 'manifest delete' verb."""
    parser = _common_parser('manifest delete', 'Delete manifest resources in reverse order')
    parser.add_argument('--dry-run', action='store_true',
                        help='Preview operations without executing')
    parser.add_argument('--yes', '-y', action='store_true',
                        help='Skip confirmation prompt')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    engine = _build_engine(args)

    if args.dry_run:
        try:
            engine.preview_delete()
        except OSError as e:
            print(f"Error reading manifest: {e}", file=sys.stderr)
            return 1
        return 0

    # Confirmation for destructive operation
    if not args.yes:
        print(f"\nWARNING: This will delete all resources in manifest '{args.filename}'.")
        print("This action cannot be undone.")
        response = input("Continue? [y/N] ").strip().lower()
        if response != 'y':
            print("Aborted.")
            return 1

    logger.info(f"Deleting resources from {args.filename}")
    start = time.time()
    error = ''
    try:
        engine.delete()
    except OSError as e:
        error = f"Error reading manifest: {e}"
    except ResolutionError as e:
        error = f"Delete failed: {e}"
    duration = time.time() - start

    if error:
        logger.error(error)
    if args.json_output:
        _emit_json('delete', not error, engine, duration, error)

    return 1 if error else 0


def resources_main(argv: list) -> int:
    """Handle 'manifest resources' verb: list resources without remote calls."""
    parser = argparse.ArgumentParser(
        prog='kube-installer manifest resources',
        description='List resources described by a manifest',
    )
    parser.add_argument('--filename', '-f', default=get_manifest_path(),
                        help='Manifest file (default: %(default)s)')
    parser.add_argument('--pipelined', action='store_true',
                        help='Read the manifest on a background thread while decoding')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    parser.add_argument('--json-output', action='store_true',
                        help='Output structured JSON to stdout')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    manifest = ManifestFile(args.filename, pipelined=args.pipelined)
    try:
        names = [r.display_name for r in manifest]
    except OSError as e:
        print(f"Error reading manifest: {e}", file=sys.stderr)
        return 1

    if args.json_output:
        print(json.dumps({'manifest': str(manifest.path), 'resources': names}, indent=2))
        return 0

    for name in names:
        print(name)
    count = len(names)
    print(f"\n{count} resource{'s' if count != 1 else ''} in {manifest.path}")
    return 0


def reconcile_main(argv: list) -> int:
    """Handle 'install reconcile' verb: one reconcile pass for an Install."""
    parser = _common_parser('install reconcile', 'Reconcile an Install against the manifest')
    parser.add_argument('--name', default='auto-install',
                        help='Install name (default: %(default)s)')
    parser.add_argument('--namespace', '-n',
                        help='Install namespace (default: from kubeconfig / service account)')
    parser.add_argument('--install', action='store_true',
                        help='Create an Install first if none exist in the namespace')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    engine = _build_engine(args)
    client = engine.client
    namespace = args.namespace or client.config.namespace

    if args.install:
        auto_install(client, namespace)

    reconciler = InstallReconciler(client, engine)
    try:
        result = reconciler.reconcile(namespace, args.name)
    except OSError as e:
        print(f"Error reading manifest: {e}", file=sys.stderr)
        return 1
    except (ResolutionError, RemoteError) as e:
        logger.error(f"Reconcile failed: {e}")
        return 1

    if args.json_output:
        print(json.dumps({
            'install': f'{namespace}/{args.name}',
            'action': result.action,
            'resources': result.resources,
            'version': result.version,
        }, indent=2))
    else:
        print(f"Install {namespace}/{args.name}: {result.action}")
    return 0
