"""Queue payloads exchanged between the ingestor, the worker and the syncer"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

NOT_FOUND = 'Not found'


class OutcomeStatus(str, Enum):
    """Row status written back to the sheet"""

    DONE = 'Done'
    FAILED = 'Failed'


def task_key(destination_id: str, row_index: int) -> str:
    """Dedup key for a scrape task"""
    return f"{destination_id}-row-{row_index}"


def result_key(destination_id: str, row_index: int) -> str:
    """Dedup key for a scrape outcome"""
    return f"result-{destination_id}-row-{row_index}"


@dataclass
class ScrapeTask:
    """One sheet row waiting to be scraped"""

    url: str
    row_index: int
    destination_id: str

    @property
    def dedup_key(self) -> str:
        return task_key(self.destination_id, self.row_index)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'rowIndex': self.row_index,
            'destinationId': self.destination_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScrapeTask':
        # Older producers used sheetId for the destination
        destination_id = data.get('destinationId') or data.get('sheetId')
        if not destination_id:
            raise ValueError(f"Task payload has no destinationId: {data}")
        return cls(
            url=data['url'],
            row_index=int(data['rowIndex']),
            destination_id=destination_id,
        )


@dataclass
class Outcome:
    """Result of attempting one ScrapeTask"""

    row_index: int
    destination_id: str
    url: str
    email: str = NOT_FOUND
    status: OutcomeStatus = OutcomeStatus.DONE
    scraped_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def dedup_key(self) -> str:
        return result_key(self.destination_id, self.row_index)

    @classmethod
    def for_task(cls, task: ScrapeTask, email: Optional[str], failed: bool = False) -> 'Outcome':
        return cls(
            row_index=task.row_index,
            destination_id=task.destination_id,
            url=task.url,
            email=email or NOT_FOUND,
            status=OutcomeStatus.FAILED if failed else OutcomeStatus.DONE,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rowIndex': self.row_index,
            'destinationId': self.destination_id,
            'url': self.url,
            'email': self.email,
            'status': self.status.value,
            'scrapedAt': self.scraped_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Outcome':
        destination_id = data.get('destinationId') or data.get('sheetId')
        if not destination_id:
            raise ValueError(f"Outcome payload has no destinationId: {data}")
        return cls(
            row_index=int(data['rowIndex']),
            destination_id=destination_id,
            url=data.get('url', ''),
            email=data.get('email') or NOT_FOUND,
            status=OutcomeStatus(data.get('status') or OutcomeStatus.DONE.value),
            scraped_at=data.get('scrapedAt') or datetime.now(timezone.utc).isoformat(),
        )
