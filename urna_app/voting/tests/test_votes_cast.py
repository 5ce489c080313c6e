from __future__ import annotations

import datetime
import re
from unittest.mock import patch

from django.db import OperationalError
from django.test import TestCase, override_settings

from voting import votes_services
from voting.errors import (
    AlreadyVoted,
    BlankVoteNotAllowed,
    CandidateElectionMismatch,
    CandidateNotFound,
    CandidateNotValidated,
    CrossSlotConflict,
    ElectionNotActive,
    ElectionNotFound,
    InvalidToken,
    PersonNotInGroup,
    VoteNotFound,
    VoteStorageContention,
    VotingWindowClosed,
)
from voting.hashing import sha256_verification_hash
from voting.models import AuditLogEntry, Candidate, Election, Vote
from voting.realtime import vote_cast
from voting.station import StationContext
from voting.tests.voting_fixtures import (
    make_candidate,
    make_election,
    make_group,
    make_person,
    make_slot_elections,
    make_vote,
    token_for,
)

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")

RECORDED_HASH_CALLS: list[dict[str, object]] = []


def recording_hasher(**kwargs) -> str:
    RECORDED_HASH_CALLS.append(kwargs)
    return sha256_verification_hash(**kwargs)


def failing_publisher(**kwargs) -> None:
    raise RuntimeError("dashboard is down")


class CastVoteTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.group = make_group("G1")
        self.person = make_person("123", group=self.group)
        self.election = make_election()
        self.c1 = make_candidate(self.election, make_person("777", first_name="Carla"), list_number=1)

    def _cast(self, *, candidate_id: int | None, election_id: int | None = None, token: str | None = None):
        return votes_services.cast_vote(
            election_id=election_id or self.election.id,
            candidate_id=candidate_id,
            token=token or token_for("123", group_number="G1"),
            context=StationContext(station_id="mesa-1", operator="jurado"),
        )

    def test_cast_returns_receipt_and_second_cast_is_already_voted(self) -> None:
        receipt = self._cast(candidate_id=self.c1.id)

        self.assertRegex(receipt.verification_hash, _HASH_RE)
        vote = Vote.objects.get(election=self.election)
        self.assertEqual(vote.person_id, self.person.id)
        self.assertEqual(vote.candidate_id, self.c1.id)
        self.assertEqual(vote.verification_hash, receipt.verification_hash)
        self.assertEqual(vote.cast_at, receipt.timestamp)
        self.election.refresh_from_db()
        self.assertEqual(self.election.votes_cast_count, 1)

        with self.assertRaises(AlreadyVoted) as ctx:
            self._cast(candidate_id=self.c1.id)
        self.assertEqual(ctx.exception.voted_at, vote.cast_at)
        self.assertEqual(Vote.objects.filter(election=self.election).count(), 1)
        self.election.refresh_from_db()
        self.assertEqual(self.election.votes_cast_count, 1)

    def test_receipt_as_dict(self) -> None:
        receipt = self._cast(candidate_id=self.c1.id)
        self.assertEqual(
            receipt.as_dict(),
            {
                "ok": True,
                "electionId": self.election.id,
                "verificationHash": receipt.verification_hash,
                "timestamp": receipt.timestamp.isoformat(),
            },
        )

    def test_insert_rejects_existing_vote_without_a_separate_read(self) -> None:
        existing = make_vote(self.election, self.person)

        with self.assertRaises(AlreadyVoted) as ctx:
            self._cast(candidate_id=self.c1.id)

        self.assertEqual(ctx.exception.voted_at, existing.cast_at)
        self.assertEqual(Vote.objects.filter(election=self.election).count(), 1)
        self.assertFalse(AuditLogEntry.objects.filter(election=self.election, event_type="vote_cast").exists())

    def test_sibling_slot_vote_blocks_cast(self) -> None:
        morning, evening = make_slot_elections("morning", "evening")
        c_morning = make_candidate(morning, make_person("701"), list_number=1)
        c_evening = make_candidate(evening, make_person("702"), list_number=1)

        self._cast(candidate_id=c_morning.id, election_id=morning.id)

        with self.assertRaises(CrossSlotConflict) as ctx:
            self._cast(candidate_id=c_evening.id, election_id=evening.id)
        self.assertEqual(ctx.exception.slot, "morning")
        self.assertFalse(Vote.objects.filter(election=evening).exists())

    def test_vote_in_an_earlier_election_with_the_same_title_and_slot_does_not_block(self) -> None:
        last_year = make_election(
            title="Center representative",
            election_type=Election.ElectionType.center_representative,
            slot="morning",
            status=Election.Status.finalized,
            starts_in=datetime.timedelta(days=-366),
            ends_in=datetime.timedelta(days=-365),
        )
        make_vote(last_year, self.person)
        (this_year,) = make_slot_elections("morning")
        candidate = make_candidate(this_year, make_person("703"), list_number=1)

        receipt = self._cast(candidate_id=candidate.id, election_id=this_year.id)

        self.assertEqual(Vote.objects.get(verification_hash=receipt.verification_hash).election_id, this_year.id)
        self.assertEqual(Vote.objects.filter(person=self.person).count(), 2)

    def test_pending_candidate_cannot_receive_votes(self) -> None:
        pending = make_candidate(
            self.election,
            make_person("778"),
            list_number=2,
            status=Candidate.Status.pending,
        )

        with self.assertRaises(CandidateNotValidated):
            self._cast(candidate_id=pending.id)
        self.assertFalse(Vote.objects.exists())

    def test_candidate_checks(self) -> None:
        other_election = make_election(title="Another group")
        foreign = make_candidate(other_election, make_person("779"), list_number=1)

        with self.assertRaises(CandidateNotFound):
            self._cast(candidate_id=999_999)
        with self.assertRaises(CandidateElectionMismatch):
            self._cast(candidate_id=foreign.id)
        self.assertFalse(Vote.objects.exists())

    def test_blank_vote(self) -> None:
        receipt = self._cast(candidate_id=None)

        vote = Vote.objects.get(verification_hash=receipt.verification_hash)
        self.assertIsNone(vote.candidate_id)

    def test_blank_vote_requires_permission(self) -> None:
        self.election.allows_blank_vote = False
        self.election.save()

        with self.assertRaises(BlankVoteNotAllowed):
            self._cast(candidate_id=None)

    def test_election_must_exist_and_be_active(self) -> None:
        with self.assertRaises(ElectionNotFound):
            self._cast(candidate_id=None, election_id=999_999)

        for status in (Election.Status.configuring, Election.Status.finalized, Election.Status.cancelled):
            with self.subTest(status=status):
                Election.objects.filter(pk=self.election.pk).update(status=status)
                with self.assertRaises(ElectionNotActive):
                    self._cast(candidate_id=self.c1.id)
        self.assertFalse(Vote.objects.exists())

    def test_voting_window(self) -> None:
        closed = make_election(
            title="Closed window",
            starts_in=datetime.timedelta(hours=-3),
            ends_in=datetime.timedelta(hours=-2),
        )
        upcoming = make_election(
            title="Upcoming window",
            starts_in=datetime.timedelta(hours=2),
            ends_in=datetime.timedelta(hours=3),
        )

        with self.assertRaisesMessage(VotingWindowClosed, "closed"):
            self._cast(candidate_id=None, election_id=closed.id)
        with self.assertRaisesMessage(VotingWindowClosed, "not started"):
            self._cast(candidate_id=None, election_id=upcoming.id)

    def test_invalid_token_is_rejected_before_anything_else(self) -> None:
        with self.assertRaises(InvalidToken):
            self._cast(candidate_id=self.c1.id, token="garbage", election_id=999_999)

    def test_token_content_is_revalidated(self) -> None:
        make_person("999", group=make_group("G2"))

        with self.assertRaises(PersonNotInGroup):
            self._cast(candidate_id=self.c1.id, token=token_for("999", group_number="G1"))

    def test_transient_storage_failure_is_retried(self) -> None:
        original = votes_services._insert_vote
        calls: list[int] = []

        def flaky_insert(**kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("database is locked")
            return original(**kwargs)

        with patch("voting.votes_services._insert_vote", side_effect=flaky_insert):
            receipt = self._cast(candidate_id=self.c1.id)

        self.assertEqual(len(calls), 2)
        self.assertEqual(Vote.objects.filter(election=self.election).count(), 1)
        self.assertTrue(Vote.objects.filter(verification_hash=receipt.verification_hash).exists())
        self.election.refresh_from_db()
        self.assertEqual(self.election.votes_cast_count, 1)

    @override_settings(VOTE_CAST_MAX_ATTEMPTS=2)
    def test_exhausted_retries_surface_as_storage_contention(self) -> None:
        with patch(
            "voting.votes_services._insert_vote",
            side_effect=OperationalError("database is locked"),
        ) as insert:
            with self.assertRaises(VoteStorageContention):
                self._cast(candidate_id=self.c1.id)

        self.assertEqual(insert.call_count, 2)
        self.assertFalse(Vote.objects.exists())

    @override_settings(VOTE_PUBLISHERS=["voting.tests.test_votes_cast.failing_publisher"])
    def test_publish_failure_does_not_roll_back_the_vote(self) -> None:
        received: list[dict[str, object]] = []

        def receiver(sender, **kwargs):
            received.append(kwargs)

        vote_cast.connect(receiver)
        self.addCleanup(vote_cast.disconnect, receiver)

        with self.assertLogs("voting.realtime", level="ERROR"):
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                receipt = self._cast(candidate_id=self.c1.id)

        self.assertEqual(len(callbacks), 1)
        self.assertTrue(Vote.objects.filter(verification_hash=receipt.verification_hash).exists())
        self.assertEqual(len(received), 1)
        self.assertEqual(received[0]["election_id"], self.election.id)
        self.assertEqual(received[0]["candidate_id"], self.c1.id)
        self.assertEqual(received[0]["votes_cast_count"], 1)
        self.assertNotIn("person_id", received[0])

    @override_settings(VOTE_VERIFICATION_HASHER="voting.tests.test_votes_cast.recording_hasher")
    def test_verification_hash_never_sees_the_voter(self) -> None:
        RECORDED_HASH_CALLS.clear()

        self._cast(candidate_id=self.c1.id)

        self.assertEqual(len(RECORDED_HASH_CALLS), 1)
        self.assertEqual(set(RECORDED_HASH_CALLS[0]), {"election_id", "candidate_id", "cast_at", "nonce"})
        self.assertEqual(RECORDED_HASH_CALLS[0]["candidate_id"], self.c1.id)

    def test_audit_entry_does_not_identify_the_voter(self) -> None:
        receipt = self._cast(candidate_id=self.c1.id)

        entry = AuditLogEntry.objects.get(election=self.election, event_type="vote_cast")
        self.assertEqual(entry.payload, {"verification_hash": receipt.verification_hash, "station_id": "mesa-1"})
        self.assertEqual(entry.actor, "jurado")


class VoteReportingTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.group = make_group("G1")
        self.election = make_election(title="Group representative G1")
        self.c1 = make_candidate(self.election, make_person("701", first_name="Carla", last_name="Ruiz"), list_number=1)
        self.c2 = make_candidate(self.election, make_person("702", first_name="Pedro", last_name="Gil"), list_number=2)
        self.voters = [make_person(str(100 + i), group=self.group) for i in range(4)]

    def test_verify_vote_shows_choice_but_not_voter(self) -> None:
        vote = make_vote(self.election, self.voters[0], candidate=self.c1)

        result = votes_services.verify_vote(verification_hash=vote.verification_hash.upper())

        self.assertEqual(result["candidate"], "Carla Ruiz")
        self.assertEqual(result["election"], "Group representative G1")
        self.assertEqual(set(result), {"ok", "verified", "election", "slot", "candidate", "timestamp"})

        blank = make_vote(self.election, self.voters[1])
        self.assertEqual(votes_services.verify_vote(verification_hash=blank.verification_hash)["candidate"], "Blank vote")

        with self.assertRaises(VoteNotFound):
            votes_services.verify_vote(verification_hash="0" * 64)

    def test_results_and_participation(self) -> None:
        make_vote(self.election, self.voters[0], candidate=self.c2)
        make_vote(self.election, self.voters[1], candidate=self.c2)
        make_vote(self.election, self.voters[2], candidate=self.c1)
        make_vote(self.election, self.voters[3])
        Election.objects.filter(pk=self.election.pk).update(enabled_voter_count=8, votes_cast_count=4)

        results = votes_services.election_results(election=self.election)

        self.assertEqual(results["totalVotes"], 4)
        self.assertEqual(results["blankVotes"], 1)
        self.assertEqual(results["blankPercent"], 25.0)
        self.assertEqual(
            [(row["name"], row["votes"], row["percent"]) for row in results["candidates"]],
            [("Pedro Gil", 2, 50.0), ("Carla Ruiz", 1, 25.0)],
        )
        self.assertEqual(
            votes_services.election_participation(election=self.election),
            {"electionId": self.election.id, "enabledVoters": 8, "votesCast": 4, "turnoutPercent": 50.0},
        )
