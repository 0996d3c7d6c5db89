"""ASGI entry point: ``uvicorn chatsage.serve:app``."""

from chatsage.app import create_app

app = create_app()
