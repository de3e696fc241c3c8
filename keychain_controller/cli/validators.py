"""Input validation for CLI arguments."""
import sys

from keychain_controller.secrets.domains.errors import ConfigError
from keychain_controller.secrets.domains.models import NAME_MAX_LENGTH, NAME_PATTERN, parse_ttl


def validate_secret_name(name: str, label: str = "Secret name") -> None:
    """
    Validate a keychain secret or group name.

    KeychainSecret names allow only: [A-Z0-9_], 1-150 characters

    Args:
        name: Name to validate
        label: How the value is described in error messages

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not name:
        print(f"Error: {label} cannot be empty", file=sys.stderr)
        print("\nNames must match: [A-Z0-9_]", file=sys.stderr)
        sys.exit(2)

    if len(name) > NAME_MAX_LENGTH:
        print(f"Error: {label} is longer than {NAME_MAX_LENGTH} characters", file=sys.stderr)
        sys.exit(2)

    if not NAME_PATTERN.fullmatch(name):
        print(f"Error: Invalid {label.lower()} '{name}'", file=sys.stderr)
        print("\nAllowed characters: uppercase letters, numbers, underscores (_)", file=sys.stderr)
        print("\nExamples of valid names:", file=sys.stderr)
        print("  ✓ DB_PASSWORD", file=sys.stderr)
        print("  ✓ API_KEY_2", file=sys.stderr)
        print("\nExamples of invalid names:", file=sys.stderr)
        print("  ✗ db_password (lowercase)", file=sys.stderr)
        print("  ✗ API-KEY (contains hyphen)", file=sys.stderr)
        sys.exit(2)


def validate_ttl(ttl: str) -> None:
    """
    Validate a TTL: a number followed by s, m or h.

    Raises:
        SystemExit with code 2 if validation fails
    """
    try:
        parse_ttl(ttl)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("\nTTL must be a positive number followed by s, m or h (e.g. 90s, 15m, 24h)", file=sys.stderr)
        sys.exit(2)
