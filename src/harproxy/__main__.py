"""Entry point for running harproxy via `python -m harproxy`."""

from harproxy.cli.commands import app


def main():
    """Run the harproxy CLI."""
    app()


if __name__ == "__main__":
    main()
