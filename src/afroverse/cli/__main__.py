"""CLI entry point for afroverse.cli module.

Enables execution via: python -m afroverse.cli
"""

from afroverse.cli.recover_jobs import main

if __name__ == "__main__":
    raise SystemExit(main())
