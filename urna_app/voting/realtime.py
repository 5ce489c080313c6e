from __future__ import annotations

import datetime
import logging

from django.conf import settings
from django.dispatch import Signal
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)

# Sent after a vote is committed. Receivers get election_id, candidate_id
# (None for a blank vote), votes_cast_count and cast_at; never the voter.
vote_cast = Signal()


def log_vote_cast(*, election_id: int, candidate_id: int | None, votes_cast_count: int, cast_at: datetime.datetime) -> None:
    logger.info("Vote published election=%s total=%s", election_id, votes_cast_count)


def publish_vote_cast(
    *,
    election_id: int,
    candidate_id: int | None,
    votes_cast_count: int,
    cast_at: datetime.datetime,
) -> None:
    """Notify observers of a committed vote. Never raises."""

    payload = {
        "election_id": election_id,
        "candidate_id": candidate_id,
        "votes_cast_count": votes_cast_count,
        "cast_at": cast_at,
    }

    for receiver, response in vote_cast.send_robust(sender=None, **payload):
        if isinstance(response, Exception):
            logger.warning("vote_cast receiver %r failed: %s", receiver, response)

    for dotted_path in settings.VOTE_PUBLISHERS:
        try:
            publisher = import_string(dotted_path)
            publisher(**payload)
        except Exception:
            logger.exception("Vote publisher %s failed for election %s", dotted_path, election_id)
