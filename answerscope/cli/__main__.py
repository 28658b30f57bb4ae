"""Allows running the CLI as a module: python -m answerscope.cli"""

from answerscope.cli import app

if __name__ == "__main__":
    app()
