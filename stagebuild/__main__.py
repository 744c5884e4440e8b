"""Entry point for ``python -m stagebuild``."""

from stagebuild.cli import app

if __name__ == "__main__":
    app()
