"""Entry point for `python -m rewind_cli` and the `rewind` console script."""

from __future__ import annotations

from rewind_cli.app import app


def main() -> None:
    app()


if __name__ == "__main__":
    main()
