"""Main entry point for ``python -m machineutil``."""

from machineutil.cli.main import main


if __name__ == "__main__":
    main()
