from __future__ import annotations

import datetime


class VotingError(Exception):
    """Base class for every client-visible voting failure.

    `code` is stable and machine-readable; the message is meant to be shown
    as-is at the voting station.
    """

    code = "voting_error"
    status = 400
    default_message = "The operation could not be completed."

    def __init__(self, message: str | None = None, **details: object) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def as_dict(self) -> dict[str, object]:
        return {"ok": False, "error": self.message, "code": self.code, **self.details}


class MalformedClaim(VotingError):
    code = "malformed_claim"
    default_message = "No document number could be read from the identification data."


class InvalidToken(VotingError):
    code = "invalid_token"
    default_message = "The vote token is invalid or has expired."


class GroupNotFound(VotingError):
    code = "group_not_found"
    status = 404

    def __init__(self, group_number: str) -> None:
        super().__init__(f"Group {group_number} does not exist.", group_number=group_number)


class PersonNotInGroup(VotingError):
    code = "person_not_in_group"
    status = 403

    def __init__(self, document_number: str, group_number: str | None = None, message: str | None = None) -> None:
        super().__init__(
            message or f"Document {document_number} does not belong to group {group_number}.",
            document_number=document_number,
            group_number=group_number,
        )


class PersonNotFound(PersonNotInGroup):
    code = "person_not_found"
    status = 404

    def __init__(self, document_number: str) -> None:
        super().__init__(
            document_number,
            None,
            message=f"No active person is registered with document {document_number}.",
        )


class VoterNotEnabled(VotingError):
    code = "voter_not_enabled"
    status = 403

    def __init__(self, document_number: str) -> None:
        super().__init__(
            f"Document {document_number} is not enabled to vote in this election.",
            document_number=document_number,
        )


class AlreadyVoted(VotingError):
    code = "already_voted"
    status = 409

    def __init__(self, voted_at: datetime.datetime | None) -> None:
        self.voted_at = voted_at
        when = voted_at.isoformat() if voted_at is not None else None
        message = "This person already voted in this election"
        message = f"{message} at {when}." if when else f"{message}."
        super().__init__(message, voted_at=when)


class CrossSlotConflict(VotingError):
    code = "cross_slot_conflict"
    status = 409

    def __init__(self, slot: str) -> None:
        self.slot = slot
        super().__init__(
            f"This person already voted in the {slot} slot of this election.",
            slot=slot,
        )


class ElectionNotFound(VotingError):
    code = "election_not_found"
    status = 404
    default_message = "Election not found."


class ElectionNotActive(VotingError):
    code = "election_not_active"
    status = 409
    default_message = "The election is not active."


class VotingWindowClosed(ElectionNotActive):
    code = "voting_window_closed"


class ElectionLocked(VotingError):
    code = "election_locked"
    status = 409
    default_message = "Candidates can only be changed while the election is being configured."


class InvalidElectionTransition(VotingError):
    code = "invalid_election_transition"
    status = 409


class ElectionNotCancelled(InvalidElectionTransition):
    code = "election_not_cancelled"
    default_message = "Only cancelled elections can be deleted."


class ElectionConfigurationError(VotingError):
    code = "election_configuration_error"


class CandidateNotFound(VotingError):
    code = "candidate_not_found"
    status = 404
    default_message = "Candidate not found."


class CandidateNotValidated(VotingError):
    code = "candidate_not_validated"
    status = 409
    default_message = "The candidate has not been validated and cannot receive votes."


class CandidateElectionMismatch(VotingError):
    code = "candidate_election_mismatch"
    default_message = "The candidate does not belong to this election."


class BlankVoteNotAllowed(VotingError):
    code = "blank_vote_not_allowed"
    default_message = "Blank votes are not allowed in this election."


class ListNumberTaken(VotingError):
    code = "list_number_taken"
    status = 409

    def __init__(self, list_number: int) -> None:
        super().__init__(f"List number {list_number} is already taken.", list_number=list_number)


class VoteNotFound(VotingError):
    code = "vote_not_found"
    status = 404
    default_message = "No vote matches this verification hash."


class VoteStorageContention(VotingError):
    code = "storage_contention"
    status = 503
    default_message = "The vote could not be stored right now. Please try again."
