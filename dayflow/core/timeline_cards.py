"""
Timeline card creation from completed analysis jobs.
"""

import logging
from datetime import datetime, time
from typing import Protocol

from dayflow.core.constants import JobStatus
from dayflow.core.db_sqlite import Database
from dayflow.core.models_sqlite import AnalysisJob, AnalysisResult, TimelineCard

logger = logging.getLogger(__name__)


class MergeStrategy(Protocol):
    def should_merge(self, previous: TimelineCard, result: AnalysisResult) -> bool:
        ...


class NeverMerge:
    """Every completed job gets its own card."""

    def should_merge(self, previous: TimelineCard, result: AnalysisResult) -> bool:
        return False


def card_date(moment: datetime) -> datetime:
    """Midnight of the calendar day the moment falls on."""
    return datetime.combine(moment.date(), time.min)


class TimelineCardBuilder:
    """Sole writer of the timeline_cards table."""

    def __init__(self, db: Database, merge_strategy: MergeStrategy | None = None):
        self.db = db
        self.merge_strategy = merge_strategy or NeverMerge()

    def build(self, job: AnalysisJob, result: AnalysisResult) -> TimelineCard:
        if job.status != JobStatus.COMPLETED:
            raise ValueError(f"Job {job.id} is {job.status}, cards need a completed job")

        with self.db.transaction():
            previous = self.db.get_last_card_before(result.start_time)
            if (previous is not None
                    and previous.date == card_date(result.start_time)
                    and self.merge_strategy.should_merge(previous, result)):
                return self._merge_into(previous, result)

            card = TimelineCard(
                id=self.db.new_id(),
                date=card_date(result.start_time),
                start_time=result.start_time,
                end_time=result.end_time,
                title=result.title,
                summary=result.summary,
                category=result.category,
                is_distraction=result.is_distraction,
                created_at=self.db.now(),
            )
            self.db.insert_card(card)

        logger.info("Created card %s: %s", card.id, card.title)
        return card

    def _merge_into(self, previous: TimelineCard, result: AnalysisResult) -> TimelineCard:
        previous.end_time = max(previous.end_time, result.end_time)
        previous.summary = f"{previous.summary} {result.summary}".strip()
        previous.is_distraction = previous.is_distraction or result.is_distraction
        self.db.update_card(previous)
        logger.info("Merged result into card %s", previous.id)
        return previous

    def cards_for_date(self, day: datetime) -> list[TimelineCard]:
        return self.db.get_cards_for_date(card_date(day))
