"""Constants used across the browserkit package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "browserkit"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 8765

DEFAULT_CLIPBOARD_SCRIPT = "/static/js/ClipboardHelper.js"
DEFAULT_GEOLOCATION_SCRIPT = "/static/js/GeolocationHelper.js"
