"""Entry point for `python -m frpfleet` and the `frpfleet` console script."""

from __future__ import annotations

from .cli import run


def main() -> None:
    run()


if __name__ == "__main__":
    raise SystemExit(main())
