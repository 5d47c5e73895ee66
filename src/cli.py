#!/usr/bin/env python3
"""CLI entry point for kube-installer.

Noun-action subcommands:
- manifest: Resource lifecycle (apply/delete/resources)
- install: Install custom resource handling (reconcile)
"""

import logging
import sys
from importlib.metadata import PackageNotFoundError, version

# Noun commands (noun-action subcommands)
NOUN_COMMANDS = {
    "manifest": "Resource lifecycle (apply/delete/resources)",
    "install": "Install custom resource handling (reconcile)",
}

MANIFEST_ACTIONS = {
    "apply": "Create missing resources from manifest",
    "delete": "Delete manifest resources in reverse order",
    "resources": "List resources described by manifest",
}

INSTALL_ACTIONS = {
    "reconcile": "Apply or delete manifest resources for an Install",
}

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def get_version() -> str:
    """Installed package version, or 'dev' when running from a checkout."""
    try:
        return version('kube-installer')
    except PackageNotFoundError:
        return 'dev'


def _print_actions(noun: str, actions: dict) -> None:
    print(f"Usage: kube-installer {noun} <action> [options]")
    print()
    print("Actions:")
    for action, desc in actions.items():
        print(f"  {action:<10} {desc}")
    print()
    print(f"Run 'kube-installer {noun} <action> --help' for action-specific options.")


def dispatch_manifest(argv: list) -> int:
    """Dispatch 'manifest' noun to action-specific handler.

    Args:
        argv: Arguments after 'manifest' (e.g., ['apply', '-f', 'serving.yaml'])

    Returns:
        Exit code
    """
    if not argv or argv[0].startswith('-'):
        _print_actions('manifest', MANIFEST_ACTIONS)
        return 1 if not argv else 0

    action = argv[0]
    rest = argv[1:]

    if action == "apply":
        from installer.cli import apply_main
        rc: int = apply_main(rest)
        return rc
    if action == "delete":
        from installer.cli import delete_main
        rc = delete_main(rest)
        return rc
    if action == "resources":
        from installer.cli import resources_main
        rc = resources_main(rest)
        return rc

    print(f"Error: Unknown manifest action '{action}'")
    _print_actions('manifest', MANIFEST_ACTIONS)
    return 1


def dispatch_install(argv: list) -> int:
    """Dispatch 'install' noun to action-specific handler."""
    if not argv or argv[0].startswith('-'):
        _print_actions('install', INSTALL_ACTIONS)
        return 1 if not argv else 0

    action = argv[0]
    if action == "reconcile":
        from installer.cli import reconcile_main
        rc: int = reconcile_main(argv[1:])
        return rc

    print(f"Error: Unknown install action '{action}'")
    _print_actions('install', INSTALL_ACTIONS)
    return 1


def dispatch_noun(noun: str, argv: list) -> int:
    """Dispatch to noun-specific CLI handler."""
    if noun == "manifest":
        return dispatch_manifest(argv)
    if noun == "install":
        return dispatch_install(argv)

    print(f"Error: Noun '{noun}' not yet implemented")
    return 1


def print_usage():
    """Print top-level usage showing noun commands."""
    print(f"kube-installer {get_version()}")
    print()
    print("Usage: kube-installer <noun> <action> [options]")
    print()
    print("Commands:")
    for noun, desc in NOUN_COMMANDS.items():
        print(f"  {noun:<12} {desc}")
    print()
    print("Run 'kube-installer <noun> --help' for command-specific options.")
    print()
    print("Examples:")
    print("  kube-installer manifest apply -f serving.yaml --owner-name auto-install --owner-uid <uid>")
    print("  kube-installer manifest delete -f serving.yaml --yes")
    print("  kube-installer install reconcile -f serving.yaml --namespace knative-serving --install")


def main(argv: list = None) -> int:
    """CLI entry point: dispatch to noun-action handlers."""
    if argv is None:
        argv = sys.argv[1:]

    if not argv:
        print_usage()
        return 0

    first_arg = argv[0]
    if first_arg in ('--help', '-h'):
        print_usage()
        return 0
    if first_arg == '--version':
        print(f"kube-installer {get_version()}")
        return 0
    if first_arg in NOUN_COMMANDS:
        return dispatch_noun(first_arg, argv[1:])

    print(f"Error: Unknown command '{first_arg}'")
    print_usage()
    return 1


if __name__ == '__main__':
    sys.exit(main())
