from unittest.mock import MagicMock

import gspread
import pytest
import requests

from email_pipeline.models import Outcome, OutcomeStatus
from email_pipeline.modules.sheets import (
    PendingRow,
    RateLimitError,
    SheetsClient,
    SinkError,
    translate_error,
)

SHEET = 'sheet-abc'


def make_client(worksheet):
    gc = MagicMock()
    gc.open_by_key.return_value.sheet1 = worksheet
    return SheetsClient(client=gc), gc


def api_error(code, message):
    response = MagicMock()
    response.status_code = code
    response.json.return_value = {'error': {'code': code, 'message': message, 'status': 'ERROR'}}
    response.text = message
    return gspread.exceptions.APIError(response)


def test_pending_rows_have_url_and_empty_status():
    worksheet = MagicMock()
    worksheet.get_all_values.return_value = [
        ['Name', 'URL', 'Email', 'Status'],
        ['Acme', 'https://fb.com/acme', '', ''],
        ['Blank', '', '', ''],
        ['Done', 'https://fb.com/done', 'a@b.com', 'Done'],
        ['Short', 'https://fb.com/short'],
    ]
    client, _ = make_client(worksheet)

    rows = client.get_pending_rows(SHEET)

    assert rows == [
        PendingRow(row_index=2, url='https://fb.com/acme'),
        PendingRow(row_index=5, url='https://fb.com/short'),
    ]


def test_pending_rows_respect_limit():
    worksheet = MagicMock()
    worksheet.get_all_values.return_value = [['url', 'email', 'status']] + [[f'https://fb.com/{i}', '', ''] for i in range(10)]
    client, _ = make_client(worksheet)

    assert len(client.get_pending_rows(SHEET, limit=3)) == 3


def test_missing_column_is_a_permanent_error():
    worksheet = MagicMock()
    worksheet.get_all_values.return_value = [['url', 'email']]
    client, _ = make_client(worksheet)

    with pytest.raises(SinkError) as exc:
        client.get_pending_rows(SHEET)

    assert not isinstance(exc.value, RateLimitError)
    assert 'status' in str(exc.value)


def test_outcomes_are_written_in_one_batch_update():
    worksheet = MagicMock()
    worksheet.row_values.return_value = ['url', 'Email', 'STATUS']
    client, gc = make_client(worksheet)
    outcomes = [
        Outcome(row_index=2, destination_id=SHEET, url='u2', email='a@acme.com'),
        Outcome(row_index=5, destination_id=SHEET, url='u5', status=OutcomeStatus.FAILED),
    ]

    assert client.write_outcomes(SHEET, outcomes) == 2

    worksheet.batch_update.assert_called_once_with([
        {'range': 'B2', 'values': [['a@acme.com']]},
        {'range': 'C2', 'values': [['Done']]},
        {'range': 'B5', 'values': [['Not found']]},
        {'range': 'C5', 'values': [['Failed']]},
    ], value_input_option='RAW')
    gc.open_by_key.assert_called_once_with(SHEET)


def test_quota_error_becomes_rate_limit_error():
    worksheet = MagicMock()
    worksheet.row_values.return_value = ['url', 'email', 'status']
    worksheet.batch_update.side_effect = api_error(429, 'Quota exceeded for quota metric Write requests')
    client, _ = make_client(worksheet)

    with pytest.raises(RateLimitError):
        client.write_outcomes(SHEET, [Outcome(row_index=2, destination_id=SHEET, url='u')])


def test_forbidden_is_permanent():
    error = translate_error(api_error(403, 'The caller does not have permission'), SHEET)

    assert isinstance(error, SinkError)
    assert not isinstance(error, RateLimitError)


def test_transport_errors_are_retryable():
    assert isinstance(translate_error(requests.exceptions.ConnectionError('reset'), SHEET), RateLimitError)
    assert isinstance(translate_error(requests.exceptions.ReadTimeout('slow'), SHEET), RateLimitError)


def test_private_key_newlines_are_restored():
    client = SheetsClient('svc@project.iam.gserviceaccount.com', '-----BEGIN\\nKEY\\n-----END')

    assert client.private_key == '-----BEGIN\nKEY\n-----END'


def test_missing_credentials_raise_sink_error():
    with pytest.raises(SinkError):
        SheetsClient().get_pending_rows(SHEET)
