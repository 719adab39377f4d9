"""Entry point for ``python -m labdash``."""

from labdash.cli import main

if __name__ == "__main__":
    main()
