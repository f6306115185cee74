"""Module entrypoint for `python -m yagwt`."""

from __future__ import annotations

from .cli import app


def main() -> None:
    app(prog_name="yagwt")


if __name__ == "__main__":
    main()
