"""Entry point for ``python -m medstock``."""

from medstock.cli import app

if __name__ == "__main__":
    app()
