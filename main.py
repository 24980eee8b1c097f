"""Command line entry for the PropertyHub maintenance commands."""

import sys

from cli.commands import run


def main() -> None:
    """Run the CLI and exit with its status code."""
    sys.exit(run())


if __name__ == "__main__":
    main()
