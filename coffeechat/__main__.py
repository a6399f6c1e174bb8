"""
Entry point for ``python -m coffeechat``.
"""

from .cli.app import app

if __name__ == "__main__":
    app()
