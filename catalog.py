import json
import logging
import os

import requests

from app_errors import classify_exception
from models import Track, is_valid_track

logger = logging.getLogger(__name__)


class TokenStore:
    """Bearer token persisted between runs; the player treats it as opaque."""

    def __init__(self, token_file=None):
        self.token_file = os.path.expanduser(token_file or "~/.cache/gotify/token.json")
        self._token = None

    def get(self):
        if self._token is None:
            self._token = self.load()
        return self._token

    def load(self):
        if not os.path.exists(self.token_file):
            return None
        try:
            with open(self.token_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except Exception as e:
            logger.warning("Token file load error [%s]: %s", classify_exception(e), e)
            return None
        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token.strip():
            logger.warning("Token file invalid: missing token field.")
            return None
        return token.strip()

    def save(self, token):
        os.makedirs(os.path.dirname(self.token_file), exist_ok=True)
        temp_file = f"{self.token_file}.tmp"
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump({"token": token}, f)
        os.replace(temp_file, self.token_file)
        os.chmod(self.token_file, 0o600)
        self._token = token

    def clear(self):
        self._token = None
        if os.path.exists(self.token_file):
            try:
                os.remove(self.token_file)
            except OSError as e:
                logger.warning("Failed to remove token file %s: %s", self.token_file, e)


class CatalogClient:
    """Read-only access to the song catalog."""

    def __init__(self, api_base_url, token_store=None, session=None, timeout=10):
        self.api_base_url = str(api_base_url or "").rstrip("/")
        self.token_store = token_store
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self):
        token = self.token_store.get() if self.token_store else None
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _get_json(self, path, params=None):
        r = self.session.get(
            f"{self.api_base_url}{path}",
            headers=self._headers(),
            params=params,
            timeout=self.timeout,
        )
        if r.status_code == 401 and self.token_store is not None:
            logger.warning("Catalog rejected the stored token; clearing it")
            self.token_store.clear()
        r.raise_for_status()
        return r.json()

    def _to_tracks(self, payload):
        if not isinstance(payload, list):
            return []
        tracks = [Track.from_api(item) for item in payload if isinstance(item, dict)]
        return [t for t in tracks if is_valid_track(t)]

    def list_songs(self):
        try:
            return self._to_tracks(self._get_json("/songs"))
        except Exception as e:
            logger.warning("List songs error [%s]: %s", classify_exception(e), e)
            return []

    def get_song(self, song_id):
        try:
            data = self._get_json(f"/songs/{song_id}")
        except Exception as e:
            logger.warning("Get song error [%s]: %s", classify_exception(e), e)
            return None
        if not isinstance(data, dict):
            return None
        track = Track.from_api(data)
        return track if is_valid_track(track) else None

    def songs_by_title(self, title):
        try:
            return self._to_tracks(self._get_json("/songs/title", params={"title": title}))
        except Exception as e:
            logger.warning("Song search error [%s]: %s", classify_exception(e), e)
            return []

    def songs_by_artist(self, artist_id):
        try:
            return self._to_tracks(self._get_json(f"/songs/artists/{artist_id}/songs"))
        except Exception as e:
            logger.warning("Artist songs error [%s]: %s", classify_exception(e), e)
            return []
