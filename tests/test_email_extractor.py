import json

from email_pipeline.modules.email_extractor import PageState, extract_email, is_valid_email


def page(*scripts, body=''):
    blobs = ''.join(f'<script type="application/json">{s}</script>' for s in scripts)
    return PageState(url='https://www.facebook.com/acme', html=f'<html><head>{blobs}</head><body>{body}</body></html>')


def intro_card(email, nested=True):
    card = {'timeline_context_list_item_type': 'INTRO_CARD_PROFILE_EMAIL'}
    item = {'context_item': {'title': {'text': email}}}
    if nested:
        card['renderer'] = item
    else:
        card.update(item)
    return {'require': [[{'__bbox': {'result': {'data': {'items': [card]}}}}]]}


def test_email_from_intro_card_renderer():
    assert extract_email(page(json.dumps(intro_card('hello@acme.com')))) == 'hello@acme.com'


def test_email_from_top_level_context_item():
    assert extract_email(page(json.dumps(intro_card('sales@acme.co.uk', nested=False)))) == 'sales@acme.co.uk'


def test_structured_match_wins_over_text_fallback():
    other = json.dumps({'text': 'noise@other.com'})
    assert extract_email(page(other, json.dumps(intro_card('hello@acme.com')))) == 'hello@acme.com'


def test_text_regex_fallback():
    blob = '{"label": {"text": "contact@acme.io"}}'
    assert extract_email(page(blob)) == 'contact@acme.io'


def test_mailto_fallback():
    state = page('{"unrelated": true}', body='<a href="mailto:info@acme.com?subject=hi">Mail</a>')
    assert extract_email(state) == 'info@acme.com'


def test_invalid_json_is_ignored():
    state = page('{broken', body='<a href="mailto:info@acme.com">Mail</a>')
    assert extract_email(state) == 'info@acme.com'


def test_no_email_returns_none():
    assert extract_email(page('{"a": 1}', body='<p>Nothing here</p>')) is None


def test_version_strings_are_not_emails():
    assert not is_valid_email('lib@2.3.44')
    assert is_valid_email('owner@shop.example.com')
