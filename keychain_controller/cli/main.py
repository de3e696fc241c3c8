"""CLI entrypoint for keychain-controller."""
import sys
import argparse
import logging

from .validators import validate_secret_name, validate_ttl

VERSION = "0.1.0"

logger = logging.getLogger(__name__)


def _configure_logging(verbosity: int) -> None:
    """Log to stderr; -v for INFO, -vv for DEBUG."""
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s" if verbosity else "%(message)s",
        stream=sys.stderr
    )


def cmd_version(args):
    """Show version information."""
    print(f"keychain-controller {VERSION}")


def cmd_config_show(args):
    """Show the config file in use and the effective settings."""
    from keychain_controller.secrets.domains.config_loader import load_config

    config = load_config(args.config)
    print(f"Config path: {config.source or '(none, environment only)'}")
    print(f"Controller namespace: {config.controller_namespace}")
    print(f"Certificate command template: {config.generate_cert_template}")
    print(f"Secret command template: {config.get_secret_template}")
    print(f"Command timeout: {config.timeout_seconds}s")
    print(f"Split arguments: {'yes' if config.split_arguments else 'no'}")
    print(f"Identity: algorithm={config.algorithm} days={config.days} subject={config.subject}")
    print(f"Sync failure backoff: {config.failure_backoff_seconds}s")
    print(f"Identity retry backoff: {config.retry_base_seconds}s doubling up to {config.retry_max_seconds}s, "
          f"max {config.max_retries} retries")


def cmd_config_validate(args):
    """Load the configuration and compile both command templates."""
    from keychain_controller.secrets.domains.config_loader import load_config

    config = load_config(args.config)
    print(f"Configuration OK ({config.source or 'environment'})")


def cmd_validate(args):
    """Check KeychainSecret fields the way admission would."""
    validate_secret_name(args.name)
    if args.group:
        validate_secret_name(args.group, "Group name")
    validate_ttl(args.ttl)
    print(f"Valid: name={args.name} group={args.group or '-'} ttl={args.ttl}")


def cmd_fetch(args):
    """Run the secret-fetch command once and write its output to stdout."""
    from keychain_controller.secrets.domains.command import CommandRunner
    from keychain_controller.secrets.domains.config_loader import load_config
    from keychain_controller.secrets.domains.models import SecretRequest
    from keychain_controller.secrets.domains.store import InMemoryStore
    from keychain_controller.secrets.workflows.synchronizer import SecretSynchronizer

    validate_secret_name(args.name)
    if args.group:
        validate_secret_name(args.group, "Group name")

    config = load_config(args.config)
    synchronizer = SecretSynchronizer(InMemoryStore(), CommandRunner(), config)
    request = SecretRequest.parse(args.owner or config.controller_namespace, args.name, args.group)
    sys.stdout.buffer.write(synchronizer.fetch(request))
    sys.stdout.flush()


def cmd_reconcile(args):
    """Run one reconcile cycle for a KeychainSecret in the cluster."""
    from keychain_controller.secrets.domains.config_loader import load_config
    from keychain_controller.secrets.domains.kube_store import KubernetesStore
    from keychain_controller.secrets.workflows.reconcile import ReconciliationLoop

    config = load_config(args.config)
    loop = ReconciliationLoop(KubernetesStore.from_environment(), config)
    result = loop.reconcile(args.namespace, args.name, failures=args.failures)

    if result.ok:
        if result.requeue:
            print(f"Reconciled {args.namespace}/{args.name}; next reconcile in {result.requeue_after}")
        else:
            print(f"KeychainSecret {args.namespace}/{args.name} not found; nothing to do")
        sys.exit(0)

    print(f"Error: reconcile failed during {result.stage}: {result.error}", file=sys.stderr)
    if result.requeue:
        print(f"Retry in {result.requeue_after}", file=sys.stderr)
    else:
        print("Not retrying: fix the cause and trigger a new reconcile", file=sys.stderr)
    sys.exit(1)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="keychain-controller",
        description="keychain-controller - materialize keychain secrets into Kubernetes Secrets",
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (command failure, cluster error, invalid configuration, etc.)
  2 - Usage error (invalid arguments, invalid secret name format, etc.)

Environment variables:
  KEYCHAIN_CONFIG        - Path to the config file
  CONTROLLER_NAMESPACE   - Namespace holding identities (overrides config file)
  GENERATE_CERT_COMMAND  - Certificate provisioning command template (overrides config file)
  GET_SECRET_COMMAND     - Secret fetch command template (overrides config file)

Configuration:
  Default location: ~/.config/keychain-controller/config.yml
        """
    )
    parser.add_argument("--config", help="Path to config file")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity (-v, -vv)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "version",
        help="Show version information",
        description="Display the current version of keychain-controller"
    )

    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Inspect keychain-controller configuration"
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")
    config_subparsers.add_parser(
        "show",
        help="Show effective configuration",
        description="Display the config file in use and the effective settings after environment overrides"
    )
    config_subparsers.add_parser(
        "validate",
        help="Validate configuration",
        description="Load the configuration and compile both command templates"
    )

    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate KeychainSecret fields",
        description="Check name, group and TTL against the KeychainSecret schema"
    )
    validate_parser.add_argument("--name", required=True, help="Keychain secret name (format: [A-Z0-9_]+)")
    validate_parser.add_argument("--group", help="Keychain group (format: [A-Z0-9_]+)")
    validate_parser.add_argument("--ttl", default="24h", help="Rotation interval, e.g. 90s, 15m, 24h (default: 24h)")

    fetch_parser = subparsers.add_parser(
        "fetch",
        help="Fetch a secret value",
        description="""
Run the configured secret-fetch command for one secret and write its raw output
to stdout. Nothing is written to the cluster.
        """
    )
    fetch_parser.add_argument("name", help="Keychain secret name (format: [A-Z0-9_]+)")
    fetch_parser.add_argument("--group", help="Keychain group the secret belongs to")
    fetch_parser.add_argument("--owner", help="Owner key passed to the template (default: controller namespace)")

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Reconcile one KeychainSecret",
        description="""
Run a single reconcile cycle for a KeychainSecret: provision the namespace identity
if needed, then create or rotate the managed Secret.

Exit codes:
  0 - Reconciled, or the KeychainSecret no longer exists
  1 - The cycle failed (the retry delay, if any, is printed)
        """
    )
    reconcile_parser.add_argument("namespace", help="Namespace of the KeychainSecret")
    reconcile_parser.add_argument("name", help="Name of the KeychainSecret resource")
    reconcile_parser.add_argument(
        "--failures",
        type=int,
        default=0,
        help="Consecutive failures seen so far, used for retry backoff (default: 0)"
    )

    return parser, {"config": config_parser}


def main(argv=None):
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (command failure, cluster error, invalid configuration, etc.)
        2 - Usage errors (invalid arguments, invalid secret name format, etc.)
    """
    parser, subparsers = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(2)

    try:
        if args.command == "version":
            cmd_version(args)
        elif args.command == "config":
            if args.config_command == "show":
                cmd_config_show(args)
            elif args.config_command == "validate":
                cmd_config_validate(args)
            else:
                subparsers["config"].print_help()
                sys.exit(2)
        elif args.command == "validate":
            cmd_validate(args)
        elif args.command == "fetch":
            cmd_fetch(args)
        elif args.command == "reconcile":
            cmd_reconcile(args)
        else:
            parser.print_help()
            sys.exit(2)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
