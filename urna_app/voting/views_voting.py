from __future__ import annotations

import json
import logging
import re

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from voting import elections_services, votes_services
from voting.eligibility import lookup_group, lookup_person_in_group, lookup_prior_vote, lookup_sibling_vote
from voting.errors import ElectionNotFound, InvalidElectionTransition, VotingError
from voting.models import Election
from voting.permissions import VOTING_CHANGE_ELECTION, VOTING_DELETE_ELECTION, json_permission_required
from voting.station import StationContext

logger = logging.getLogger(__name__)

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")

# Station endpoints are called without a session and are CSRF exempt.
# Lifecycle endpoints use the admin session and keep CSRF protection.


def _error_response(exc: VotingError) -> JsonResponse:
    return JsonResponse(exc.as_dict(), status=exc.status)


def _json_body(request) -> dict[str, object]:
    raw = request.body.decode("utf-8") if request.body else "{}"
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object.")
    return data


def _get_election_or_error(election_id: int) -> Election:
    election = Election.objects.filter(pk=election_id).first()
    if election is None:
        raise ElectionNotFound()
    return election


@csrf_exempt
@require_POST
def voter_identify(request) -> JsonResponse:
    try:
        data = _json_body(request)
    except (ValueError, UnicodeDecodeError) as exc:
        return JsonResponse({"ok": False, "error": str(exc)}, status=400)

    try:
        election_id = int(data.get("electionId") or 0)
    except (TypeError, ValueError):
        return JsonResponse({"ok": False, "error": "electionId must be an integer."}, status=400)

    group_number = str(data.get("groupNumber") or "").strip() or None
    document_number = str(data.get("documentNumber") or "").strip() or None
    payload = data.get("payload")

    try:
        identified = votes_services.identify_voter(
            election_id=election_id,
            payload=payload,
            group_number=group_number,
            document_number=document_number,
            context=StationContext.from_request(request),
        )
    except VotingError as exc:
        return _error_response(exc)

    return JsonResponse(identified.as_dict())


@csrf_exempt
@require_POST
def election_vote_cast(request, election_id: int) -> JsonResponse:
    try:
        data = _json_body(request)
    except (ValueError, UnicodeDecodeError) as exc:
        return JsonResponse({"ok": False, "error": str(exc)}, status=400)

    token = str(data.get("token") or "").strip()
    if not token:
        return JsonResponse({"ok": False, "error": "token is required."}, status=400)

    candidate_raw = data.get("candidateId")
    try:
        candidate_id = int(candidate_raw) if candidate_raw is not None else None
    except (TypeError, ValueError):
        return JsonResponse({"ok": False, "error": "candidateId must be an integer or null."}, status=400)

    try:
        receipt = votes_services.cast_vote(
            election_id=election_id,
            candidate_id=candidate_id,
            token=token,
            context=StationContext.from_request(request),
        )
    except VotingError as exc:
        return _error_response(exc)

    return JsonResponse(receipt.as_dict())


@require_GET
def group_validate(request, group_number: str) -> JsonResponse:
    return JsonResponse(lookup_group(group_number).as_dict())


@csrf_exempt
@require_POST
def group_person_validate(request) -> JsonResponse:
    try:
        data = _json_body(request)
    except (ValueError, UnicodeDecodeError) as exc:
        return JsonResponse({"ok": False, "error": str(exc)}, status=400)

    group_number = str(data.get("groupNumber") or "").strip()
    document_number = str(data.get("documentNumber") or "").strip()
    if not group_number or not document_number:
        return JsonResponse({"ok": False, "error": "groupNumber and documentNumber are required."}, status=400)

    return JsonResponse(lookup_person_in_group(group_number, document_number).as_dict())


@csrf_exempt
@require_POST
def election_has_voted(request, election_id: int) -> JsonResponse:
    try:
        data = _json_body(request)
    except (ValueError, UnicodeDecodeError) as exc:
        return JsonResponse({"ok": False, "error": str(exc)}, status=400)

    document_number = str(data.get("documentNumber") or "").strip()
    if not document_number:
        return JsonResponse({"ok": False, "error": "documentNumber is required."}, status=400)

    try:
        election = _get_election_or_error(election_id)
    except VotingError as exc:
        return _error_response(exc)

    return JsonResponse(
        {
            **lookup_prior_vote(document_number, election).as_dict(),
            **lookup_sibling_vote(document_number, election).as_dict(),
        }
    )


@require_GET
def vote_verify(request) -> JsonResponse:
    verification_hash = str(request.GET.get("hash") or "").strip().lower()
    if not _HASH_RE.fullmatch(verification_hash):
        return JsonResponse({"ok": False, "error": "Enter a valid verification hash."}, status=400)

    try:
        return JsonResponse(votes_services.verify_vote(verification_hash=verification_hash))
    except VotingError as exc:
        return _error_response(exc)


@require_GET
def election_results(request, election_id: int) -> JsonResponse:
    try:
        election = _get_election_or_error(election_id)
    except VotingError as exc:
        return _error_response(exc)

    if election.status != Election.Status.finalized:
        return JsonResponse({"ok": False, "error": "Results are published once the election is finalized."}, status=409)

    return JsonResponse(
        {
            "ok": True,
            **votes_services.election_results(election=election),
            "participation": votes_services.election_participation(election=election),
        }
    )


def _lifecycle_response(request, election_id: int, action: str) -> JsonResponse:
    try:
        election = _get_election_or_error(election_id)
    except VotingError as exc:
        return _error_response(exc)

    actor = str(request.user.get_username() or "").strip()
    try:
        match action:
            case "activate":
                allow_blank_only = str(request.POST.get("allow_blank_only") or "").lower() in {"1", "true", "on"}
                elections_services.activate_election(election=election, actor=actor, allow_blank_only=allow_blank_only)
            case "finalize":
                elections_services.finalize_election(election=election, actor=actor)
            case "cancel":
                elections_services.cancel_election(election=election, actor=actor)
            case "delete":
                deleted = elections_services.delete_election(election=election, actor=actor)
                return JsonResponse({"ok": True, "election_id": election_id, "deleted": deleted})
            case _:
                raise InvalidElectionTransition(f"Unknown election action: {action}.")
    except VotingError as exc:
        return _error_response(exc)

    return JsonResponse({"ok": True, "election_id": election.id, "status": election.status})


@require_POST
@json_permission_required(VOTING_CHANGE_ELECTION)
def election_activate(request, election_id: int) -> JsonResponse:
    return _lifecycle_response(request, election_id, "activate")


@require_POST
@json_permission_required(VOTING_CHANGE_ELECTION)
def election_finalize(request, election_id: int) -> JsonResponse:
    return _lifecycle_response(request, election_id, "finalize")


@require_POST
@json_permission_required(VOTING_CHANGE_ELECTION)
def election_cancel(request, election_id: int) -> JsonResponse:
    return _lifecycle_response(request, election_id, "cancel")


@require_POST
@json_permission_required(VOTING_DELETE_ELECTION)
def election_delete(request, election_id: int) -> JsonResponse:
    return _lifecycle_response(request, election_id, "delete")
