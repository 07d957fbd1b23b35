"""
asgi.py -- ASGI entry point for the EduMate backend.

Settings are read from the environment once, here, and the app is built by
the factory. Tests never import this module; they call create_app() with
their own Settings.

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app

app = create_app()
