"""Application entry point for ``python -m wait_on`` and the ``wait-on`` script."""

from wait_on.app.cli import cli

__all__ = ["main"]


def main() -> None:
    """Run the wait-on command-line interface."""
    cli(prog_name="wait-on")


if __name__ == "__main__":
    main()
