from __future__ import annotations

import dataclasses
import datetime
import enum
import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from voting.errors import MalformedClaim
from voting.station import StationContext

logger = logging.getLogger(__name__)

_DOCUMENT_SEPARATORS_RE = re.compile(r"[\s.]+")

_DOCUMENT_KEYS = ("doc", "numero_documento", "documentNumber", "document_number")
_GROUP_KEYS = ("ficha", "numero_ficha", "groupNumber", "group_number")


class IdentificationMethod(enum.StrEnum):
    scanned_credential = "scanned_credential"
    manual_entry = "manual_entry"
    group_document_pair = "group_document_pair"
    direct_input = "direct_input"


# Credential `type` tags emitted by the card printer and the station UI.
_METHOD_BY_TYPE_TAG = {
    "MANUAL_INPUT": IdentificationMethod.manual_entry,
    "DIRECT_INPUT": IdentificationMethod.direct_input,
}


@dataclass(frozen=True)
class VoterClaim:
    """Normalized, still unverified statement of who wants to vote."""

    document_number: str
    method: IdentificationMethod
    timestamp: datetime.datetime
    group_number: str | None = None
    person_id: int | None = None
    # Display-only data read from the credential; never authoritative.
    display: Mapping[str, str] = field(default_factory=dict)

    def with_person(self, person_id: int) -> VoterClaim:
        return dataclasses.replace(self, person_id=person_id)


def normalize_document_number(value: object) -> str:
    document = _DOCUMENT_SEPARATORS_RE.sub("", str(value if value is not None else ""))
    if not document:
        raise MalformedClaim()
    if not document.isdigit():
        raise MalformedClaim("The document number must contain digits only.")

    min_length = int(settings.VOTER_DOCUMENT_MIN_LENGTH)
    max_length = int(settings.VOTER_DOCUMENT_MAX_LENGTH)
    if not min_length <= len(document) <= max_length:
        raise MalformedClaim(f"The document number must have between {min_length} and {max_length} digits.")
    return document


def _normalize_group_number(value: object) -> str | None:
    group_number = str(value if value is not None else "").strip()
    return group_number or None


def _first_present(data: Mapping[str, object], keys: tuple[str, ...]) -> object | None:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _parse_claim_timestamp(value: object) -> datetime.datetime:
    if isinstance(value, bool) or value in (None, ""):
        return timezone.now()
    if isinstance(value, (int, float)):
        # Scanners emit JavaScript epoch milliseconds.
        try:
            return datetime.datetime.fromtimestamp(value / 1000, tz=datetime.UTC)
        except (OverflowError, OSError, ValueError):
            return timezone.now()

    parsed = parse_datetime(str(value))
    if parsed is None:
        return timezone.now()
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, datetime.UTC)
    return parsed


def _display_from_mapping(data: Mapping[str, object]) -> dict[str, str]:
    display: dict[str, str] = {}
    name = data.get("name") or data.get("nombre")
    if not name and (data.get("nombres") or data.get("apellidos")):
        name = f"{data.get('nombres') or ''} {data.get('apellidos') or ''}"
    if name:
        display["name"] = str(name).strip()
    program = data.get("program") or data.get("programa") or data.get("nombre_programa")
    if program:
        display["program"] = str(program).strip()
    return display


def _claim_from_mapping(data: Mapping[str, object]) -> VoterClaim:
    raw_document = _first_present(data, _DOCUMENT_KEYS)
    if raw_document is None:
        raise MalformedClaim("The identification data has no document number.")

    type_tag = str(data.get("type") or "").strip().upper()
    method = _METHOD_BY_TYPE_TAG.get(type_tag, IdentificationMethod.scanned_credential)

    return VoterClaim(
        document_number=normalize_document_number(raw_document),
        group_number=_normalize_group_number(_first_present(data, _GROUP_KEYS)),
        method=method,
        timestamp=_parse_claim_timestamp(data.get("timestamp")),
        display=_display_from_mapping(data),
    )


def resolve_identity(
    payload: str | Mapping[str, object] | None = None,
    *,
    group_number: str | None = None,
    document_number: str | None = None,
    context: StationContext | None = None,
) -> VoterClaim:
    """Turn raw voter input into a `VoterClaim`.

    Accepts a scanned credential payload (JSON text or an already decoded
    object), a bare document number, or a group number plus a typed document
    number. Pure normalization: nothing is looked up here.
    """

    if document_number is not None:
        group = _normalize_group_number(group_number)
        claim = VoterClaim(
            document_number=normalize_document_number(document_number),
            group_number=group,
            method=IdentificationMethod.group_document_pair if group else IdentificationMethod.manual_entry,
            timestamp=timezone.now(),
        )
    elif isinstance(payload, Mapping):
        claim = _claim_from_mapping(payload)
    else:
        raw = str(payload if payload is not None else "").strip()
        if not raw:
            raise MalformedClaim()

        try:
            decoded = json.loads(raw)
        except ValueError:
            decoded = None

        if isinstance(decoded, Mapping):
            claim = _claim_from_mapping(decoded)
        else:
            claim = VoterClaim(
                document_number=normalize_document_number(raw),
                method=IdentificationMethod.direct_input,
                timestamp=timezone.now(),
            )

        if group_number is not None and claim.group_number is None:
            claim = dataclasses.replace(claim, group_number=_normalize_group_number(group_number))

    station = context or StationContext()
    logger.debug(
        "Resolved voter claim method=%s group=%s station=%s",
        claim.method,
        claim.group_number or "-",
        station.station_id or "-",
    )
    return claim
