from unittest.mock import MagicMock

import pytest

from email_pipeline.app import create_app
from email_pipeline.modules.sheets import PendingRow, SinkError

SHEET = 'sheet-abc'


@pytest.fixture
def sheets():
    return MagicMock()


@pytest.fixture
def client(store, sheets):
    app = create_app(store, sheets=sheets)
    app.config['TESTING'] = True
    return app.test_client()


def test_health_lists_queue_counts(client):
    response = client.get('/')

    assert response.status_code == 200
    body = response.get_json()
    assert body['status'] == 'healthy'
    assert set(body['queues']) == {'scrape-queue', 'results-queue', 'dead-letter'}


def test_start_queue_with_explicit_urls(client):
    payload = {'sheetId': SHEET, 'urls': ['https://fb.com/a', 'https://fb.com/b']}

    first = client.post('/api/start-queue', json=payload).get_json()
    second = client.post('/api/start-queue', json=payload).get_json()

    assert first['enqueued'] == 2
    assert second == {'success': True, 'sheetId': SHEET, 'enqueued': 0, 'duplicates': 2}
    stats = client.get('/api/queues/scrape-queue/stats').get_json()
    assert stats['waiting'] == 2
    assert stats['paused'] is False


def test_start_queue_reads_pending_rows_from_sheet(client, sheets, store):
    sheets.get_pending_rows.return_value = [PendingRow(row_index=4, url='https://fb.com/x')]

    body = client.post('/api/start-queue', json={'sheetId': SHEET}).get_json()

    assert body['enqueued'] == 1
    assert store.get_job('scrape-queue', f'{SHEET}-row-4') is not None


def test_start_queue_reports_sheet_errors(client, sheets):
    sheets.get_pending_rows.side_effect = SinkError('Sheet is missing required column(s): status')

    response = client.post('/api/start-queue', json={'sheetId': SHEET})

    assert response.status_code == 502


@pytest.mark.parametrize('payload', [
    {},
    {'sheetId': ''},
    {'sheetId': SHEET, 'urls': 'https://fb.com/a'},
    {'sheetId': SHEET, 'urls': ['https://fb.com/a', '']},
])
def test_start_queue_rejects_bad_requests(client, payload):
    assert client.post('/api/start-queue', json=payload).status_code == 400


def test_unknown_queue_is_404(client):
    assert client.get('/api/queues/nope/stats').status_code == 404
    assert client.post('/api/queues/nope/pause').status_code == 404


def test_pause_and_resume(client):
    client.post('/api/queues/scrape-queue/pause')
    assert client.get('/api/queues/scrape-queue/stats').get_json()['paused'] is True

    client.post('/api/queues/scrape-queue/resume')
    assert client.get('/api/queues/scrape-queue/stats').get_json()['paused'] is False


def test_drain_removes_waiting_jobs(client):
    client.post('/api/start-queue', json={'sheetId': SHEET, 'urls': ['https://fb.com/a']})

    body = client.post('/api/queues/scrape-queue/drain').get_json()

    assert body['removed'] == 1
    assert client.get('/api/queues/scrape-queue/stats').get_json()['waiting'] == 0


def test_clean_validates_body(client):
    assert client.post('/api/queues/scrape-queue/clean', json={'status': 'waiting'}).status_code == 400
    assert client.post('/api/queues/scrape-queue/clean', json={'graceSeconds': -1}).status_code == 400

    response = client.post('/api/queues/scrape-queue/clean', json={'status': 'failed', 'graceSeconds': 0})
    assert response.status_code == 200
    assert response.get_json()['removed'] == 0


def test_obliterate_removes_everything(client):
    client.post('/api/start-queue', json={'sheetId': SHEET, 'urls': ['https://fb.com/a', 'https://fb.com/b']})

    body = client.post('/api/queues/scrape-queue/obliterate').get_json()

    assert body['removed'] == 2
