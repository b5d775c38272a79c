"""Authentication cookie sessions with round-robin rotation"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

logger = logging.getLogger(__name__)

ALLOWED_COOKIE_KEYS = {'name', 'value', 'url', 'domain', 'path', 'expires', 'httpOnly', 'secure', 'sameSite'}

SAME_SITE_VALUES = {'Strict', 'Lax', 'None'}


def normalize_same_site(value: Optional[str]) -> str:
    """Map browser-export sameSite values onto what Playwright accepts"""
    if not value:
        return 'Lax'
    value = str(value).strip()
    lowered = value.lower()
    if lowered == 'no_restriction':
        return 'None'
    if lowered == 'unspecified':
        return 'Lax'
    value = lowered.capitalize()
    return value if value in SAME_SITE_VALUES else 'Lax'


def normalize_cookie(cookie: Dict[str, Any]) -> Dict[str, Any]:
    """Convert one exported cookie into a Playwright cookie dict"""
    cookie = dict(cookie)
    if 'expirationDate' in cookie and 'expires' not in cookie:
        cookie['expires'] = cookie.pop('expirationDate')

    normalized = {key: value for key, value in cookie.items() if key in ALLOWED_COOKIE_KEYS}

    value = normalized.get('value')
    if isinstance(value, str) and '%' in value:
        normalized['value'] = unquote(value)

    normalized['sameSite'] = normalize_same_site(normalized.get('sameSite'))

    if 'expires' in normalized:
        try:
            normalized['expires'] = float(normalized['expires'])
        except (TypeError, ValueError):
            normalized.pop('expires')

    # Playwright needs either url or domain+path
    if 'url' not in normalized and 'domain' in normalized and 'path' not in normalized:
        normalized['path'] = '/'

    return normalized


def parse_sessions(raw: Any) -> List[List[Dict[str, Any]]]:
    """A list of cookie dicts is one session, a list of lists is several"""
    if not raw:
        return []
    if not isinstance(raw, list):
        raise ValueError(f"Expected a JSON list of cookies, got {type(raw).__name__}")
    if all(isinstance(item, dict) for item in raw):
        return [raw]
    if all(isinstance(item, list) for item in raw):
        return [session for session in raw if session]
    raise ValueError("Cookie list mixes sessions and single cookies")


class SessionStore:
    """Immutable list of sessions plus a rotation cursor.

    One instance is shared by every scrape in a worker process. The cursor is not
    locked; concurrent rotations may skip a session, which is acceptable.
    """

    def __init__(self, sessions: List[List[Dict[str, Any]]] = None):
        self._sessions = tuple(tuple(session) for session in (sessions or []))
        self.current_index = 0

    @classmethod
    def from_env(cls, cookies_json: str = '', cookies_file: str = '') -> 'SessionStore':
        """Load sessions from a JSON string, or from a JSON file when no string is given"""
        raw_text = cookies_json
        try:
            if not raw_text and cookies_file:
                raw_text = Path(cookies_file).read_text(encoding='utf-8')
            sessions = parse_sessions(json.loads(raw_text)) if raw_text else []
        except (OSError, ValueError) as e:
            logger.error(f"Could not load cookie sessions: {e}")
            sessions = []

        if sessions:
            logger.info(f"Loaded {len(sessions)} cookie session(s)")
        else:
            logger.warning("No cookie sessions configured, scraping public pages only")
        return cls(sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def current(self) -> Optional[List[Dict[str, Any]]]:
        """Normalized cookies of the session at the cursor, or None without sessions"""
        if not self._sessions:
            return None
        session = self._sessions[self.current_index % len(self._sessions)]
        return [normalize_cookie(cookie) for cookie in session]

    def rotate(self) -> bool:
        """Advance the cursor. Returns False (and does nothing) with fewer than two sessions."""
        if len(self._sessions) <= 1:
            logger.warning("Session rotation requested but no alternate session is available")
            return False
        self.current_index = (self.current_index + 1) % len(self._sessions)
        logger.info(f"Rotated to session {self.current_index + 1}/{len(self._sessions)}")
        return True
