"""
Entry point for running the CLI via `python -m ui`
"""

from ui.cli import app

if __name__ == "__main__":
    app()
