"""
asgi.py -- Application entry point for tokengate.

Run with:  uvicorn asgi:app --reload

Configuration comes from the environment / .env (see core/config.py).
"""

from api.main import create_app

app = create_app()
