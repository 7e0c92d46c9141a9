"""
Entry point for running rhythm-schema as a module.

Enables execution via:
    python -m rhythm_schema [command] [options]

This is equivalent to running the installed CLI:
    rhythm-schema [command] [options]
"""

from rhythm_schema.cli import app

if __name__ == "__main__":
    app()
