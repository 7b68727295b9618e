"""
asgi.py -- Application assembly for authgate.

This is one of the two process edges (main.py is the other) and the only
place the HTTP app reads configuration from the environment.

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app
from core.config import get_settings

app = create_app(get_settings())
