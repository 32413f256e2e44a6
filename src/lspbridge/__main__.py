"""CLI entry point for lspbridge."""

import sys


def main() -> int:
    """Main entry point for the lspbridge CLI."""
    from lspbridge.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
