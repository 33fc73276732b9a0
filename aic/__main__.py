"""Entry point for running aic as a module: python -m aic."""

from aic.cli.commands import app

if __name__ == "__main__":
    app()
