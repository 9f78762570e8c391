"""Example: full playback workflow against an in-process API.

This example demonstrates:
1. Building the services from a fixture file
2. Opening a free preview as an unpurchased student
3. Decrypting the streaming URL through the server
4. Rendering the watermark overlay and running one security scan
5. Closing the session (server-side revocation)
"""

from pathlib import Path

from fastapi.testclient import TestClient

from videodrm.access.catalog import load_fixtures
from videodrm.client.api import DRMApiClient
from videodrm.client.player import PlaybackClient
from videodrm.client.store import SessionStore
from videodrm.config import load_config
from videodrm.server.app import DRMServices, create_app
from videodrm.utils.logs import configure_logging

CONFIG_DIR = Path(__file__).parent.parent / "config"
STUDENT = "64b7f0c2a1b2c3d4e5f6aaaa"
PREVIEW = "64b7f0c2a1b2c3d4e5f60718"


def demo():
	config = load_config(CONFIG_DIR / "videodrm.yml", env={})
	configure_logging(config.log_level, config.log_json)
	catalog, purchases = load_fixtures(CONFIG_DIR / "fixtures.yml")
	services = DRMServices.build(config=config, catalog=catalog, purchases=purchases)

	with TestClient(create_app(services)) as http:
		api = DRMApiClient(http, services.tokens.issue(STUDENT))
		player = PlaybackClient(api, SessionStore(STUDENT), config=config,
								environment_provider=lambda: {"documentTitle": "Lesson 1"})

		data = player.open_video(PREVIEW)
		print("Session:", data["drm"]["sessionId"])
		print("Stream URL:", player.decrypt_url())

		overlay = player.overlay(1280, 720)
		print("Watermark:", overlay.text, "tiles:", len(overlay.tiles))
		print("Secure environment:", player.run_security_check().is_secure)

		player.close()
		print("Stats:", services.sessions.stats())


if __name__ == "__main__":
	demo()
