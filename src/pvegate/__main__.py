"""Main entry point for ``python -m pvegate``."""

from pvegate.cli.main import main


if __name__ == "__main__":
    main()
