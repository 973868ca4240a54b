"""ASGI entrypoint for the map veto API."""

from map_veto.api.app import create_app
from map_veto.containers import build_container

app = create_app(build_container())
