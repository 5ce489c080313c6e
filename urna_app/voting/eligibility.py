from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass

from voting.errors import (
    AlreadyVoted,
    CrossSlotConflict,
    GroupNotFound,
    InvalidToken,
    PersonNotFound,
    PersonNotInGroup,
    VoterNotEnabled,
)
from voting.identity import VoterClaim, normalize_document_number
from voting.models import Election, EnabledVoter, Group, Person, Vote

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupLookup:
    exists: bool
    group: Group | None = None

    def as_dict(self) -> dict[str, object]:
        if self.group is None:
            return {"exists": False, "group": None}
        return {
            "exists": True,
            "group": {
                "id": self.group.id,
                "number": self.group.number,
                "programName": self.group.program_name,
                "slot": self.group.slot,
                "memberCount": self.group.members.filter(is_active=True).count(),
            },
        }


@dataclass(frozen=True)
class PersonLookup:
    exists: bool
    person: Person | None = None

    def as_dict(self) -> dict[str, object]:
        if self.person is None:
            return {"exists": False, "person": None}
        return {
            "exists": True,
            "person": {
                "id": self.person.id,
                "documentNumber": self.person.document_number,
                "firstName": self.person.first_name,
                "lastName": self.person.last_name,
                "groupNumber": self.person.group.number if self.person.group_id else None,
            },
        }


@dataclass(frozen=True)
class PriorVoteLookup:
    has_voted: bool
    voted_at: datetime.datetime | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "hasVoted": self.has_voted,
            "votedAt": self.voted_at.isoformat() if self.voted_at is not None else None,
        }


@dataclass(frozen=True)
class SiblingVoteLookup:
    has_voted_in_other_slot: bool
    slot: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {"hasVotedInOtherSlot": self.has_voted_in_other_slot, "slot": self.slot}


@dataclass(frozen=True)
class Eligibility:
    claim: VoterClaim
    person: Person


def lookup_group(group_number: str) -> GroupLookup:
    number = str(group_number or "").strip()
    if not number:
        return GroupLookup(exists=False)
    group = Group.objects.filter(number=number, is_active=True).first()
    return GroupLookup(exists=group is not None, group=group)


def _active_person(document_number: str) -> Person | None:
    return (
        Person.objects.select_related("group")
        .filter(document_number=document_number, is_active=True)
        .first()
    )


def lookup_person_in_group(group_number: str, document_number: str) -> PersonLookup:
    group = lookup_group(group_number).group
    if group is None:
        return PersonLookup(exists=False)
    person = _active_person(str(document_number or "").strip())
    if person is None or person.group_id != group.id:
        return PersonLookup(exists=False)
    return PersonLookup(exists=True, person=person)


def _prior_vote_at(*, person_id: int, election: Election) -> datetime.datetime | None:
    return (
        Vote.objects.filter(election=election, person_id=person_id)
        .values_list("cast_at", flat=True)
        .first()
    )


def _sibling_vote_slot(*, person_id: int, election: Election) -> str | None:
    if not election.sibling_key:
        return None
    return (
        Vote.objects.filter(person_id=person_id, election__in=election.sibling_elections())
        .values_list("election__slot", flat=True)
        .first()
    )


def lookup_prior_vote(document_number: str, election: Election) -> PriorVoteLookup:
    person = _active_person(str(document_number or "").strip())
    if person is None:
        return PriorVoteLookup(has_voted=False)
    voted_at = _prior_vote_at(person_id=person.id, election=election)
    return PriorVoteLookup(has_voted=voted_at is not None, voted_at=voted_at)


def lookup_sibling_vote(document_number: str, election: Election) -> SiblingVoteLookup:
    person = _active_person(str(document_number or "").strip())
    if person is None:
        return SiblingVoteLookup(has_voted_in_other_slot=False)
    slot = _sibling_vote_slot(person_id=person.id, election=election)
    return SiblingVoteLookup(has_voted_in_other_slot=slot is not None, slot=slot)


def raise_for_prior_votes(*, person: Person, election: Election) -> None:
    """Fail if the person already holds a vote in the election or a sibling."""

    voted_at = _prior_vote_at(person_id=person.id, election=election)
    if voted_at is not None:
        raise AlreadyVoted(voted_at)

    slot = _sibling_vote_slot(person_id=person.id, election=election)
    if slot is not None:
        raise CrossSlotConflict(slot)


def verify_identity(claim: VoterClaim, election: Election) -> Person:
    """Resolve the claim to an active person allowed on this election's roster."""

    document_number = normalize_document_number(claim.document_number)

    group: Group | None = None
    if claim.group_number:
        group = lookup_group(claim.group_number).group
        if group is None:
            raise GroupNotFound(claim.group_number)

    person = _active_person(document_number)
    if group is not None:
        if person is None or person.group_id != group.id:
            raise PersonNotInGroup(document_number, group.number)
    elif person is None:
        raise PersonNotFound(document_number)

    if claim.person_id is not None and claim.person_id != person.id:
        raise InvalidToken("The vote token does not match the registered voter.")

    roster = EnabledVoter.objects.filter(election=election)
    if roster.exists() and not roster.filter(person=person).exists():
        raise VoterNotEnabled(document_number)

    return person


def check_eligibility(claim: VoterClaim, election: Election) -> Eligibility:
    """Run every eligibility step and attach the resolved person to the claim.

    Used as the advisory pre-check at the voting station. Casting never relies
    on its result: the vote insert enforces single voting on its own.
    """

    person = verify_identity(claim, election)
    raise_for_prior_votes(person=person, election=election)

    logger.debug("Voter eligible election=%s person=%s", election.id, person.id)
    return Eligibility(claim=claim.with_person(person.id), person=person)
