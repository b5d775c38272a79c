"""Google Sheets access: pending-row reads and batched outcome writes"""
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

import gspread
import requests
from gspread.utils import rowcol_to_a1

from email_pipeline.models import Outcome

logger = logging.getLogger(__name__)

SCOPES = [
    'https://www.googleapis.com/auth/spreadsheets',
    'https://www.googleapis.com/auth/drive',
]
REQUIRED_COLUMNS = ('url', 'email', 'status')
QUOTA_MARKERS = ('429', 'quota exceeded', 'rate limit')


class SinkError(Exception):
    """Permanent failure writing to or reading from the sheet"""


class RateLimitError(SinkError):
    """Transient failure (quota or transport); worth retrying later"""


@dataclass
class PendingRow:
    row_index: int
    url: str


def translate_error(error: Exception, sheet_id: str) -> SinkError:
    """Map gspread/requests exceptions onto SinkError or RateLimitError"""
    if isinstance(error, SinkError):
        return error
    if isinstance(error, gspread.exceptions.APIError):
        code = getattr(error, 'code', None)
        if code is None and getattr(error, 'response', None) is not None:
            code = getattr(error.response, 'status_code', None)
        message = str(error)
        if code == 429 or any(marker in message.lower() for marker in QUOTA_MARKERS):
            return RateLimitError(f"Sheets quota exceeded for {sheet_id}: {message}")
        return SinkError(f"Sheets API error for {sheet_id} (code {code}): {message}")
    if isinstance(error, gspread.exceptions.SpreadsheetNotFound):
        return SinkError(f"Spreadsheet {sheet_id} not found or not shared with the service account")
    if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return RateLimitError(f"Transport error talking to Sheets for {sheet_id}: {error}")
    return SinkError(f"Unexpected Sheets error for {sheet_id}: {error}")


class SheetsClient:
    """Reads pending rows from, and writes email/status back to, the first worksheet.

    Header row 1 must name ``url``, ``email`` and ``status`` columns (any case).
    Worksheets and column positions are cached per sheet id.
    """

    def __init__(self, service_account_email: str = '', private_key: str = '',
                 service_account_file: str = '', client: gspread.Client = None):
        self.service_account_email = service_account_email
        # Keys pasted into .env usually carry literal \n sequences
        self.private_key = (private_key or '').replace('\\n', '\n')
        self.service_account_file = service_account_file
        self._client = client
        self._worksheets: Dict[str, gspread.Worksheet] = {}
        self._columns: Dict[str, Dict[str, int]] = {}
        self._lock = threading.Lock()

    def _get_client(self) -> gspread.Client:
        if self._client is None:
            if self.service_account_email and self.private_key:
                self._client = gspread.service_account_from_dict({
                    'type': 'service_account',
                    'client_email': self.service_account_email,
                    'private_key': self.private_key,
                    'token_uri': 'https://oauth2.googleapis.com/token',
                }, scopes=SCOPES)
            elif self.service_account_file:
                self._client = gspread.service_account(filename=self.service_account_file, scopes=SCOPES)
            else:
                raise SinkError(
                    "Missing Google Sheets credentials: set GOOGLE_SERVICE_ACCOUNT_EMAIL and "
                    "GOOGLE_PRIVATE_KEY, or GOOGLE_SERVICE_ACCOUNT_FILE"
                )
            logger.info("Authenticated with Google Sheets")
        return self._client

    def _get_worksheet(self, sheet_id: str) -> gspread.Worksheet:
        with self._lock:
            worksheet = self._worksheets.get(sheet_id)
            if worksheet is None:
                worksheet = self._get_client().open_by_key(sheet_id).sheet1
                self._worksheets[sheet_id] = worksheet
            return worksheet

    def _resolve_columns(self, sheet_id: str, header: List[str]) -> Dict[str, int]:
        positions = {}
        for index, name in enumerate(header, start=1):
            key = (name or '').strip().lower()
            if key in REQUIRED_COLUMNS and key not in positions:
                positions[key] = index
        missing = [name for name in REQUIRED_COLUMNS if name not in positions]
        if missing:
            raise SinkError(f"Sheet {sheet_id} is missing required column(s): {', '.join(missing)}")
        self._columns[sheet_id] = positions
        return positions

    def _get_columns(self, sheet_id: str, worksheet: gspread.Worksheet) -> Dict[str, int]:
        columns = self._columns.get(sheet_id)
        if columns is None:
            columns = self._resolve_columns(sheet_id, worksheet.row_values(1))
        return columns

    def get_pending_rows(self, sheet_id: str, limit: Optional[int] = None) -> List[PendingRow]:
        """Rows with a url and an empty status, in sheet order (first data row is 2)"""
        try:
            worksheet = self._get_worksheet(sheet_id)
            values = worksheet.get_all_values()
        except Exception as e:
            raise translate_error(e, sheet_id) from e

        if not values:
            return []
        columns = self._resolve_columns(sheet_id, values[0])
        url_col = columns['url'] - 1
        status_col = columns['status'] - 1

        pending = []
        for offset, row in enumerate(values[1:]):
            url = row[url_col].strip() if len(row) > url_col else ''
            status = row[status_col].strip() if len(row) > status_col else ''
            if url and not status:
                pending.append(PendingRow(row_index=offset + 2, url=url))
                if limit and len(pending) >= limit:
                    break

        logger.info(f"Found {len(pending)} pending rows in sheet {sheet_id}")
        return pending

    def write_outcomes(self, sheet_id: str, outcomes: List[Outcome]) -> int:
        """Write email and status for every outcome in a single batch_update call"""
        if not outcomes:
            return 0
        try:
            worksheet = self._get_worksheet(sheet_id)
            columns = self._get_columns(sheet_id, worksheet)
            data = []
            for outcome in outcomes:
                data.append({
                    'range': rowcol_to_a1(outcome.row_index, columns['email']),
                    'values': [[outcome.email]],
                })
                data.append({
                    'range': rowcol_to_a1(outcome.row_index, columns['status']),
                    'values': [[outcome.status.value]],
                })
            worksheet.batch_update(data, value_input_option='RAW')
        except Exception as e:
            raise translate_error(e, sheet_id) from e

        logger.info(f"Wrote {len(outcomes)} outcomes to sheet {sheet_id}")
        return len(outcomes)
