"""Locate the contact email in a rendered profile page"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}')
TEXT_EMAIL_RE = re.compile(r'"text":\s*"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})"')

EMAIL_CARD_TYPE = 'INTRO_CARD_PROFILE_EMAIL'


@dataclass
class PageState:
    """What an extractor gets to look at after navigation"""

    url: str
    html: str


def is_valid_email(email: str) -> bool:
    """Validate email format more strictly"""
    if not email or not EMAIL_RE.fullmatch(email):
        return False

    domain = email.split('@', 1)[1]
    # Reject version strings like name@2.3.44
    if domain.split('.')[-1].isdigit():
        return False
    if domain.replace('.', '').isdigit():
        return False
    return True


def _title_text(node: Any) -> Optional[str]:
    if not isinstance(node, dict):
        return None
    title = node.get('context_item', {}).get('title') if isinstance(node.get('context_item'), dict) else None
    if isinstance(title, dict) and isinstance(title.get('text'), str):
        return title['text']
    return None


def find_intro_card_email(obj: Any) -> Optional[str]:
    """Walk a JSON blob for the profile intro card that carries the email"""
    if isinstance(obj, dict):
        if obj.get('timeline_context_list_item_type') == EMAIL_CARD_TYPE:
            email = _title_text(obj.get('renderer')) or _title_text(obj)
            if email:
                return email.strip()
        for value in obj.values():
            found = find_intro_card_email(value)
            if found:
                return found
    elif isinstance(obj, list):
        for item in obj:
            found = find_intro_card_email(item)
            if found:
                return found
    return None


def extract_email(state: PageState) -> Optional[str]:
    """Default extraction strategy.

    1. structured search through ``script[type=application/json]`` blobs
    2. ``"text": "<email>"`` regex over the same script text
    3. first ``mailto:`` link
    """
    soup = BeautifulSoup(state.html or '', 'html.parser')
    scripts = [script.string or script.get_text() or '' for script in soup.find_all('script', type='application/json')]

    for text in scripts:
        try:
            data = json.loads(text)
        except ValueError:
            continue
        email = find_intro_card_email(data)
        if email and is_valid_email(email):
            return email

    for text in scripts:
        match = TEXT_EMAIL_RE.search(text)
        if match and is_valid_email(match.group(1)):
            return match.group(1)

    for a in soup.select('a[href^="mailto:"]'):
        href = a.get('href', '')
        email = href.split(':', 1)[1].split('?', 1)[0].strip()
        if is_valid_email(email):
            return email

    logger.debug(f"No email found on {state.url}")
    return None
