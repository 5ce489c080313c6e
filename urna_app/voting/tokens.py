from __future__ import annotations

import datetime
from collections.abc import Mapping
from typing import Any

from django.conf import settings
from django.core import signing
from django.utils.dateparse import parse_datetime

from voting.errors import InvalidToken, MalformedClaim
from voting.identity import IdentificationMethod, VoterClaim, normalize_document_number


def make_signed_token(payload: Mapping[str, Any]) -> str:
    return signing.dumps(dict(payload), salt=settings.VOTE_TOKEN_SALT, compress=True)


def read_signed_token(token: str, *, max_age_seconds: int | None = None) -> dict[str, Any]:
    return signing.loads(
        token,
        salt=settings.VOTE_TOKEN_SALT,
        max_age=max_age_seconds if max_age_seconds is not None else settings.VOTE_TOKEN_TTL_SECONDS,
    )


def encode_vote_token(claim: VoterClaim) -> str:
    """Serialize a validated claim for the trip from the station to the cast call.

    The token only carries the claim; it is never proof that the claim was
    validated. `decode_vote_token` output is always re-validated.
    """

    payload: dict[str, Any] = {
        "documentNumber": claim.document_number,
        "method": str(claim.method),
        "timestamp": claim.timestamp.isoformat(),
    }
    if claim.group_number is not None:
        payload["groupNumber"] = claim.group_number
    if claim.person_id is not None:
        payload["personId"] = claim.person_id
    if claim.display:
        payload["display"] = dict(claim.display)
    return make_signed_token(payload)


def decode_vote_token(token: str, *, max_age_seconds: int | None = None) -> VoterClaim:
    if not isinstance(token, str) or not token.strip():
        raise InvalidToken("A vote token is required.")

    try:
        payload = read_signed_token(token.strip(), max_age_seconds=max_age_seconds)
    except signing.SignatureExpired as exc:
        raise InvalidToken("The vote token has expired; identify the voter again.") from exc
    except (signing.BadSignature, ValueError, TypeError) as exc:
        raise InvalidToken() from exc

    if not isinstance(payload, dict):
        raise InvalidToken()

    try:
        document_number = normalize_document_number(payload.get("documentNumber"))
    except MalformedClaim as exc:
        raise InvalidToken("The vote token has no valid document number.") from exc

    try:
        method = IdentificationMethod(payload.get("method"))
    except ValueError as exc:
        raise InvalidToken("The vote token has an unknown identification method.") from exc

    timestamp = parse_datetime(str(payload.get("timestamp") or ""))
    if timestamp is None:
        raise InvalidToken("The vote token has no valid timestamp.")
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=datetime.UTC)

    group_number = payload.get("groupNumber")
    person_id = payload.get("personId")
    if person_id is not None and (isinstance(person_id, bool) or not isinstance(person_id, int)):
        raise InvalidToken()

    display = payload.get("display") or {}
    if not isinstance(display, dict):
        display = {}

    return VoterClaim(
        document_number=document_number,
        method=method,
        timestamp=timestamp,
        group_number=str(group_number) if group_number not in (None, "") else None,
        person_id=person_id,
        display={str(k): str(v) for k, v in display.items()},
    )
