from __future__ import annotations

import datetime
import functools
import logging
import secrets
from collections.abc import Mapping
from dataclasses import dataclass

from django.conf import settings
from django.db import IntegrityError, OperationalError, transaction
from django.db.models import Count, F
from django.utils import timezone

from voting.eligibility import Eligibility, check_eligibility, raise_for_prior_votes, verify_identity
from voting.errors import (
    BlankVoteNotAllowed,
    CandidateElectionMismatch,
    CandidateNotFound,
    CandidateNotValidated,
    ElectionNotActive,
    ElectionNotFound,
    VoteNotFound,
    VoteStorageContention,
    VotingWindowClosed,
)
from voting.hashing import get_verification_hasher
from voting.identity import VoterClaim, resolve_identity
from voting.models import AuditLogEntry, Candidate, Election, Person, Vote
from voting.realtime import publish_vote_cast
from voting.station import StationContext
from voting.tokens import decode_vote_token, encode_vote_token

logger = logging.getLogger(__name__)

BLANK_VOTE_LABEL = "Blank vote"


@dataclass(frozen=True)
class VoteReceipt:
    election_id: int
    verification_hash: str
    timestamp: datetime.datetime

    def as_dict(self) -> dict[str, object]:
        return {
            "ok": True,
            "electionId": self.election_id,
            "verificationHash": self.verification_hash,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class IdentifiedVoter:
    eligibility: Eligibility
    token: str

    def as_dict(self) -> dict[str, object]:
        claim = self.eligibility.claim
        person = self.eligibility.person
        return {
            "ok": True,
            "token": self.token,
            "method": str(claim.method),
            "voter": {
                "name": person.full_name,
                "documentNumber": person.document_number,
                "groupNumber": person.group.number if person.group_id else None,
                "program": person.group.program_name if person.group_id else claim.display.get("program", ""),
            },
            # The cast re-checks everything; this answer is informational.
            "advisory": True,
        }


def _get_election(election_id: int) -> Election:
    election = Election.objects.filter(pk=election_id).first()
    if election is None:
        raise ElectionNotFound()
    return election


def _require_votable(election: Election, *, now: datetime.datetime) -> None:
    if election.status != Election.Status.active:
        raise ElectionNotActive(f"The election is {election.get_status_display().lower()}; votes are not accepted.")

    if election.is_within_window(now):
        return
    if now < election.start_datetime:
        minutes = max(1, round((election.start_datetime - now).total_seconds() / 60))
        raise VotingWindowClosed(f"Voting has not started yet; it opens in {minutes} minute(s).")
    minutes = max(1, round((now - election.end_datetime).total_seconds() / 60))
    raise VotingWindowClosed(f"Voting closed {minutes} minute(s) ago.")


def identify_voter(
    *,
    election_id: int,
    payload: str | Mapping[str, object] | None = None,
    group_number: str | None = None,
    document_number: str | None = None,
    context: StationContext | None = None,
) -> IdentifiedVoter:
    """Advisory pre-check run at the voting station before the ballot is shown."""

    election = _get_election(election_id)
    _require_votable(election, now=timezone.now())

    claim = resolve_identity(
        payload,
        group_number=group_number,
        document_number=document_number,
        context=context,
    )
    eligibility = check_eligibility(claim, election)
    return IdentifiedVoter(eligibility=eligibility, token=encode_vote_token(eligibility.claim))


def _load_candidate(*, election: Election, candidate_id: int | None) -> Candidate | None:
    if candidate_id is None:
        if not election.allows_blank_vote:
            raise BlankVoteNotAllowed()
        return None

    candidate = Candidate.objects.filter(pk=candidate_id).first()
    if candidate is None:
        raise CandidateNotFound()
    if candidate.status != Candidate.Status.validated:
        raise CandidateNotValidated()
    if candidate.election_id != election.id:
        raise CandidateElectionMismatch()
    return candidate


def _insert_vote(
    *,
    election: Election,
    candidate: Candidate | None,
    person: Person,
    cast_at: datetime.datetime,
    verification_hash: str,
) -> Vote:
    """Insert the vote; the uniqueness constraints are the double-vote check."""

    try:
        with transaction.atomic():
            return Vote.objects.create(
                election=election,
                candidate=candidate,
                person=person,
                scope_key=election.vote_scope_key,
                verification_hash=verification_hash,
                cast_at=cast_at,
            )
    except IntegrityError as exc:
        # Another vote by this person committed first; report which one.
        raise_for_prior_votes(person=person, election=election)
        raise VoteStorageContention() from exc


@transaction.atomic
def _cast_vote_once(
    *,
    election_id: int,
    candidate_id: int | None,
    claim: VoterClaim,
    context: StationContext,
) -> VoteReceipt:
    election = _get_election(election_id)
    now = timezone.now()
    _require_votable(election, now=now)

    candidate = _load_candidate(election=election, candidate_id=candidate_id)
    person = verify_identity(claim, election)

    nonce = secrets.token_hex(16)
    hasher = get_verification_hasher()
    verification_hash = hasher(
        election_id=election.id,
        candidate_id=candidate.id if candidate is not None else None,
        cast_at=now,
        nonce=nonce,
    )

    vote = _insert_vote(
        election=election,
        candidate=candidate,
        person=person,
        cast_at=now,
        verification_hash=verification_hash,
    )

    Election.objects.filter(pk=election.pk).update(votes_cast_count=F("votes_cast_count") + 1)
    votes_cast_count = Election.objects.values_list("votes_cast_count", flat=True).get(pk=election.pk)

    AuditLogEntry.objects.create(
        election=election,
        event_type="vote_cast",
        payload={"verification_hash": verification_hash, "station_id": context.station_id},
        actor=context.operator,
    )

    transaction.on_commit(
        functools.partial(
            publish_vote_cast,
            election_id=election.id,
            candidate_id=vote.candidate_id,
            votes_cast_count=votes_cast_count,
            cast_at=now,
        ),
        robust=True,
    )

    logger.info(
        "Vote cast election=%s hash=%s station=%s",
        election.id,
        verification_hash,
        context.station_id or "-",
    )
    return VoteReceipt(election_id=election.id, verification_hash=verification_hash, timestamp=now)


def cast_vote(
    *,
    election_id: int,
    candidate_id: int | None,
    token: str,
    context: StationContext | None = None,
) -> VoteReceipt:
    """Cast a vote carried by `token`.

    Everything in the token is re-validated. A person's single vote per
    election (and per sibling set) is enforced by the insert itself, so
    retrying after a transient storage failure can never create a second vote.
    """

    claim = decode_vote_token(token)
    context = context or StationContext()

    attempts = max(1, int(settings.VOTE_CAST_MAX_ATTEMPTS))
    last_exc: OperationalError | None = None
    for attempt in range(1, attempts + 1):
        try:
            return _cast_vote_once(
                election_id=election_id,
                candidate_id=candidate_id,
                claim=claim,
                context=context,
            )
        except OperationalError as exc:
            last_exc = exc
            logger.warning(
                "Transient storage failure casting vote election=%s attempt=%s/%s: %s",
                election_id,
                attempt,
                attempts,
                exc,
            )

    raise VoteStorageContention() from last_exc


def verify_vote(*, verification_hash: str) -> dict[str, object]:
    vote = (
        Vote.objects.select_related("election", "candidate__person")
        .filter(verification_hash=str(verification_hash or "").strip().lower())
        .first()
    )
    if vote is None:
        raise VoteNotFound()

    return {
        "ok": True,
        "verified": True,
        "election": vote.election.title,
        "slot": vote.election.slot,
        "candidate": vote.candidate.person.full_name if vote.candidate is not None else BLANK_VOTE_LABEL,
        "timestamp": vote.cast_at.isoformat(),
    }


def _percent(part: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(part * 100 / total, 2)


def election_results(*, election: Election) -> dict[str, object]:
    votes = Vote.objects.filter(election=election)
    total = votes.count()
    blank = votes.filter(candidate__isnull=True).count()

    candidates = (
        Candidate.objects.filter(election=election)
        .select_related("person")
        .annotate(vote_count=Count("votes"))
        .order_by("-vote_count", "list_number")
    )
    rows = [
        {
            "id": candidate.id,
            "name": candidate.person.full_name,
            "listNumber": candidate.list_number,
            "votes": candidate.vote_count,
            "percent": _percent(candidate.vote_count, total),
        }
        for candidate in candidates
    ]

    return {
        "election": {"id": election.id, "title": election.title, "status": election.status, "slot": election.slot},
        "totalVotes": total,
        "blankVotes": blank,
        "blankPercent": _percent(blank, total),
        "candidates": rows,
    }


def election_participation(*, election: Election) -> dict[str, object]:
    election.refresh_from_db(fields=["enabled_voter_count", "votes_cast_count"])
    return {
        "electionId": election.id,
        "enabledVoters": election.enabled_voter_count,
        "votesCast": election.votes_cast_count,
        "turnoutPercent": election.turnout_percent,
    }
