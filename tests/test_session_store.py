import json

import pytest

from email_pipeline.modules.session_store import SessionStore, normalize_cookie, normalize_same_site


@pytest.mark.parametrize('raw, expected', [
    ('no_restriction', 'None'),
    ('unspecified', 'Lax'),
    ('strict', 'Strict'),
    ('LAX', 'Lax'),
    ('none', 'None'),
    (None, 'Lax'),
    ('whatever', 'Lax'),
])
def test_same_site_is_normalized(raw, expected):
    assert normalize_same_site(raw) == expected


def test_cookie_is_mapped_to_playwright_fields():
    cookie = normalize_cookie({
        'name': 'xs',
        'value': '12%3Aabc%2Fdef',
        'domain': '.facebook.com',
        'path': '/',
        'expirationDate': 1767225600.5,
        'sameSite': 'no_restriction',
        'hostOnly': False,
        'storeId': '0',
        'session': False,
    })

    assert cookie == {
        'name': 'xs',
        'value': '12:abc/def',
        'domain': '.facebook.com',
        'path': '/',
        'expires': 1767225600.5,
        'sameSite': 'None',
    }


def test_plain_value_is_left_alone():
    cookie = normalize_cookie({'name': 'c_user', 'value': '1000', 'domain': '.facebook.com'})

    assert cookie['value'] == '1000'
    assert cookie['path'] == '/'
    assert cookie['sameSite'] == 'Lax'


def test_flat_cookie_list_is_one_session():
    cookies = [{'name': 'a', 'value': '1', 'domain': '.x.com'}, {'name': 'b', 'value': '2', 'domain': '.x.com'}]

    store = SessionStore.from_env(json.dumps(cookies))

    assert len(store) == 1
    assert [c['name'] for c in store.current()] == ['a', 'b']


def test_nested_lists_are_several_sessions(tmp_path):
    sessions = [
        [{'name': 'a', 'value': '1', 'domain': '.x.com'}],
        [{'name': 'b', 'value': '2', 'domain': '.x.com'}],
    ]
    path = tmp_path / 'cookies.json'
    path.write_text(json.dumps(sessions))

    store = SessionStore.from_env('', str(path))

    assert len(store) == 2


def test_unparseable_cookies_mean_no_sessions():
    store = SessionStore.from_env('{not json')

    assert len(store) == 0
    assert store.current() is None


@pytest.mark.parametrize('count', [0, 1])
def test_rotation_is_a_reported_noop_with_one_or_no_session(count):
    store = SessionStore([[{'name': 'a', 'value': str(i), 'domain': '.x.com'}] for i in range(count)])

    assert store.rotate() is False
    assert store.current_index == 0


def test_rotation_cycles_through_sessions():
    store = SessionStore([[{'name': 'a', 'value': str(i), 'domain': '.x.com'}] for i in range(3)])

    seen = []
    for _ in range(3):
        assert store.rotate() is True
        seen.append(store.current()[0]['value'])

    assert seen == ['1', '2', '0']
