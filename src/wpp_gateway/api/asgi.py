"""ASGI entrypoint for the WhatsApp gateway API."""

from wpp_gateway.api.app import create_app
from wpp_gateway.containers import build_container

app = create_app(build_container())
