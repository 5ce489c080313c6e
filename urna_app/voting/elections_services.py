from __future__ import annotations

import datetime
import logging
from collections.abc import Sequence

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import QuerySet
from django.utils import timezone

from voting.errors import (
    ElectionConfigurationError,
    ElectionLocked,
    ElectionNotCancelled,
    ElectionNotFound,
    InvalidElectionTransition,
    ListNumberTaken,
)
from voting.models import (
    AuditLogEntry,
    Candidate,
    Center,
    Election,
    EnabledVoter,
    Group,
    Person,
    Site,
    Vote,
    election_title_root,
)

logger = logging.getLogger(__name__)


def _lock_election(election_id: int) -> Election:
    election = Election.objects.select_for_update().filter(pk=election_id).first()
    if election is None:
        raise ElectionNotFound()
    return election


def _sync_instance(target: Election, source: Election) -> None:
    # Callers keep using the instance they passed in.
    for field_name in ("status", "enabled_voter_count", "votes_cast_count", "updated_at"):
        setattr(target, field_name, getattr(source, field_name))


def _audit(election: Election, event_type: str, *, actor: str = "", **payload: object) -> None:
    AuditLogEntry.objects.create(election=election, event_type=event_type, payload=payload, actor=actor)


def _check_sibling(*, sibling_of: Election, title: str, slot: str, center: Center | None) -> str:
    """Return the sibling key `slot` joins; the new election may differ only by slot."""

    anchor = _lock_election(sibling_of.pk)
    if not anchor.sibling_key:
        raise ElectionConfigurationError("Only center representative elections are split by slot.")
    if anchor.status != Election.Status.configuring:
        raise ElectionConfigurationError("Slots can only be added while the election is being configured.")
    if election_title_root(title=title, slot=slot) != anchor.title_root:
        raise ElectionConfigurationError("Slot elections must share the title of the election they split.")
    if (center.pk if center is not None else None) != anchor.center_id:
        raise ElectionConfigurationError("Slot elections must belong to the same center.")
    if Election.objects.filter(sibling_key=anchor.sibling_key, slot=slot).exists():
        raise ElectionConfigurationError(f"The election already has a {slot} slot.")
    return anchor.sibling_key


@transaction.atomic
def create_election(
    *,
    title: str,
    election_type: str,
    start_datetime: datetime.datetime,
    end_datetime: datetime.datetime,
    slot: str = "",
    description: str = "",
    allows_blank_vote: bool = True,
    center: Center | None = None,
    site: Site | None = None,
    group: Group | None = None,
    created_by: str = "",
    sibling_of: Election | None = None,
) -> Election:
    title = str(title or "").strip()
    slot = str(slot or "").strip().lower()

    if not title:
        raise ElectionConfigurationError("The election needs a title.")
    if election_type not in Election.ElectionType.values:
        raise ElectionConfigurationError(f"Unknown election type: {election_type}.")
    if start_datetime >= end_datetime:
        raise ElectionConfigurationError("The start of the election must be before its end.")

    if election_type == Election.ElectionType.center_representative:
        if not slot:
            raise ElectionConfigurationError("Center representative elections need a slot.")
        if slot not in settings.ELECTION_CENTER_REPRESENTATIVE_SLOTS:
            logger.warning("Election %r uses unrecognized slot %r", title, slot)
    elif slot:
        raise ElectionConfigurationError("Only center representative elections are split by slot.")

    sibling_key = ""
    if sibling_of is not None:
        if election_type != Election.ElectionType.center_representative:
            raise ElectionConfigurationError("Only center representative elections are split by slot.")
        sibling_key = _check_sibling(sibling_of=sibling_of, title=title, slot=slot, center=center)

    try:
        with transaction.atomic():
            election = Election.objects.create(
                title=title,
                description=description,
                election_type=election_type,
                start_datetime=start_datetime,
                end_datetime=end_datetime,
                slot=slot,
                sibling_key=sibling_key,
                allows_blank_vote=allows_blank_vote,
                center=center,
                site=site,
                group=group,
                created_by=created_by,
            )
    except IntegrityError as exc:
        raise ElectionConfigurationError(f"The election already has a {slot} slot.") from exc

    _audit(election, "election_created", actor=created_by, election_type=election_type, slot=slot)
    return election


@transaction.atomic
def create_slot_elections(
    *,
    title: str,
    slots: Sequence[str],
    start_datetime: datetime.datetime,
    end_datetime: datetime.datetime,
    description: str = "",
    allows_blank_vote: bool = True,
    center: Center | None = None,
    created_by: str = "",
) -> list[Election]:
    """Create one center representative election per slot, all in one sibling set.

    A person may vote in at most one election of the set.
    """

    normalized = list(dict.fromkeys(str(slot or "").strip().lower() for slot in slots))
    if not normalized or not all(normalized):
        raise ElectionConfigurationError("Choose at least one slot.")

    elections: list[Election] = []
    for slot in normalized:
        elections.append(
            create_election(
                title=title,
                election_type=Election.ElectionType.center_representative,
                start_datetime=start_datetime,
                end_datetime=end_datetime,
                slot=slot,
                description=description,
                allows_blank_vote=allows_blank_vote,
                center=center,
                created_by=created_by,
                sibling_of=elections[0] if elections else None,
            )
        )

    logger.info("Created %s slot election(s) for %r", len(elections), title)
    return elections


def _roster_queryset(election: Election) -> QuerySet[Person]:
    people = Person.objects.filter(is_active=True, group__isnull=False)
    match election.election_type:
        case Election.ElectionType.center_representative:
            if election.center_id is not None:
                people = people.filter(group__center_id=election.center_id)
            return people.filter(group__slot=election.slot)
        case Election.ElectionType.site_leader if election.site_id is not None:
            return people.filter(group__site_id=election.site_id)
        case Election.ElectionType.group_representative if election.group_id is not None:
            return people.filter(group_id=election.group_id)
    return people


def generate_enabled_voters(*, election: Election) -> int:
    """Snapshot who may vote in the election; returns the roster size."""

    person_ids = list(_roster_queryset(election).values_list("id", flat=True))
    EnabledVoter.objects.bulk_create(
        [EnabledVoter(election=election, person_id=person_id) for person_id in person_ids],
        ignore_conflicts=True,
    )
    return EnabledVoter.objects.filter(election=election).count()


@transaction.atomic
def activate_election(*, election: Election, actor: str = "", allow_blank_only: bool = False) -> Election:
    locked = _lock_election(election.pk)
    if locked.status == Election.Status.active:
        _sync_instance(election, locked)
        return election
    if locked.status != Election.Status.configuring:
        raise InvalidElectionTransition(
            f"A {locked.get_status_display().lower()} election cannot be activated."
        )

    validated = Candidate.objects.filter(election=locked, status=Candidate.Status.validated).count()
    if validated == 0 and not (allow_blank_only and locked.allows_blank_vote):
        raise InvalidElectionTransition("The election needs at least one validated candidate.")

    locked.enabled_voter_count = generate_enabled_voters(election=locked)
    locked.status = Election.Status.active
    locked.save(update_fields=["status", "enabled_voter_count", "updated_at"])

    _audit(
        locked,
        "election_activated",
        actor=actor,
        validated_candidates=validated,
        enabled_voters=locked.enabled_voter_count,
    )
    logger.info("Election %s activated (%s enabled voters)", locked.id, locked.enabled_voter_count)
    _sync_instance(election, locked)
    return election


@transaction.atomic
def finalize_election(*, election: Election, actor: str = "") -> Election:
    locked = _lock_election(election.pk)
    if locked.status == Election.Status.finalized:
        _sync_instance(election, locked)
        return election
    if locked.status != Election.Status.active:
        raise InvalidElectionTransition("Only active elections can be finalized.")

    locked.status = Election.Status.finalized
    locked.save(update_fields=["status", "updated_at"])

    _audit(locked, "election_finalized", actor=actor, votes_cast=locked.votes_cast_count)
    logger.info("Election %s finalized with %s vote(s)", locked.id, locked.votes_cast_count)
    _sync_instance(election, locked)
    return election


@transaction.atomic
def cancel_election(*, election: Election, actor: str = "") -> Election:
    locked = _lock_election(election.pk)
    if locked.status == Election.Status.cancelled:
        _sync_instance(election, locked)
        return election
    if locked.status not in {Election.Status.active, Election.Status.configuring}:
        raise InvalidElectionTransition("A finalized election cannot be cancelled.")

    previous_status = locked.status
    locked.status = Election.Status.cancelled
    locked.save(update_fields=["status", "updated_at"])

    # Cast votes are kept.
    _audit(
        locked,
        "election_cancelled",
        actor=actor,
        previous_status=previous_status,
        votes_cast=locked.votes_cast_count,
    )
    logger.info("Election %s cancelled from %s", locked.id, previous_status)
    _sync_instance(election, locked)
    return election


@transaction.atomic
def delete_election(*, election: Election, actor: str = "") -> dict[str, int]:
    locked = _lock_election(election.pk)
    if locked.status != Election.Status.cancelled:
        raise ElectionNotCancelled()

    votes_deleted, _ = Vote.objects.filter(election=locked).delete()
    voters_deleted, _ = EnabledVoter.objects.filter(election=locked).delete()
    candidates_deleted, _ = Candidate.objects.filter(election=locked).delete()
    AuditLogEntry.objects.filter(election=locked).delete()
    election_id = locked.id
    locked.delete()

    logger.info(
        "Election %s deleted by %s: %s vote(s), %s candidate(s), %s enabled voter(s)",
        election_id,
        actor or "-",
        votes_deleted,
        candidates_deleted,
        voters_deleted,
    )
    return {
        "votes": votes_deleted,
        "candidates": candidates_deleted,
        "enabled_voters": voters_deleted,
    }


def finalize_expired_elections(*, now: datetime.datetime | None = None) -> tuple[list[int], list[int]]:
    """Finalize active elections whose end has passed. Returns (finalized, failed) ids."""

    now = now or timezone.now()
    finalized: list[int] = []
    failed: list[int] = []
    for election in Election.objects.filter(status=Election.Status.active, end_datetime__lte=now).only("id"):
        try:
            finalize_election(election=election, actor="advance_elections")
        except InvalidElectionTransition:
            logger.warning("Election %s changed state before it could be finalized", election.id)
            failed.append(election.id)
            continue
        finalized.append(election.id)
    return finalized, failed


def _require_configuring(election: Election) -> None:
    if election.status != Election.Status.configuring:
        raise ElectionLocked()


def _ensure_list_number_free(*, election: Election, list_number: int, exclude_pk: int | None = None) -> None:
    taken = Candidate.objects.filter(election=election, list_number=list_number)
    if exclude_pk is not None:
        taken = taken.exclude(pk=exclude_pk)
    if taken.exists():
        raise ListNumberTaken(list_number)


@transaction.atomic
def create_candidate(*, election: Election, person: Person, list_number: int, proposals: str = "") -> Candidate:
    locked = _lock_election(election.pk)
    _require_configuring(locked)

    if int(list_number) <= 0:
        raise ElectionConfigurationError("List numbers start at 1.")
    _ensure_list_number_free(election=locked, list_number=list_number)
    if Candidate.objects.filter(election=locked, person=person).exists():
        raise ElectionConfigurationError(f"{person.full_name} is already a candidate in this election.")

    try:
        with transaction.atomic():
            candidate = Candidate.objects.create(
                election=locked,
                person=person,
                list_number=list_number,
                proposals=proposals,
            )
    except IntegrityError as exc:
        raise ListNumberTaken(list_number) from exc

    _audit(locked, "candidate_created", candidate_id=candidate.id, list_number=list_number)
    return candidate


@transaction.atomic
def update_candidate(
    *,
    candidate: Candidate,
    list_number: int | None = None,
    proposals: str | None = None,
) -> Candidate:
    locked = _lock_election(candidate.election_id)
    _require_configuring(locked)

    update_fields = ["updated_at"]
    if list_number is not None and list_number != candidate.list_number:
        _ensure_list_number_free(election=locked, list_number=list_number, exclude_pk=candidate.pk)
        candidate.list_number = list_number
        update_fields.append("list_number")
    if proposals is not None:
        candidate.proposals = proposals
        update_fields.append("proposals")

    candidate.save(update_fields=update_fields)
    return candidate


@transaction.atomic
def validate_candidate(*, candidate: Candidate, actor: str = "") -> Candidate:
    locked = _lock_election(candidate.election_id)
    _require_configuring(locked)

    candidate.status = Candidate.Status.validated
    candidate.validated_at = timezone.now()
    candidate.rejection_reason = ""
    candidate.save(update_fields=["status", "validated_at", "rejection_reason", "updated_at"])
    _audit(locked, "candidate_validated", actor=actor, candidate_id=candidate.id)
    return candidate


@transaction.atomic
def reject_candidate(*, candidate: Candidate, reason: str = "", actor: str = "") -> Candidate:
    locked = _lock_election(candidate.election_id)
    _require_configuring(locked)

    candidate.status = Candidate.Status.rejected
    candidate.validated_at = None
    candidate.rejection_reason = str(reason or "").strip()
    candidate.save(update_fields=["status", "validated_at", "rejection_reason", "updated_at"])
    _audit(locked, "candidate_rejected", actor=actor, candidate_id=candidate.id)
    return candidate


@transaction.atomic
def delete_candidate(*, candidate: Candidate, actor: str = "") -> None:
    locked = _lock_election(candidate.election_id)
    _require_configuring(locked)

    candidate_id = candidate.id
    candidate.delete()
    _audit(locked, "candidate_deleted", actor=actor, candidate_id=candidate_id)
