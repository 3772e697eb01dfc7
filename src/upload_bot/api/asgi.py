"""ASGI entrypoint for the upload bot API."""

from upload_bot.api.app import create_app
from upload_bot.containers import build_container

app = create_app(build_container())
