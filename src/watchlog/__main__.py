"""Allow ``python -m watchlog`` to invoke the CLI."""

from watchlog.cli.main import main

if __name__ == "__main__":  # pragma: no cover
    main()
