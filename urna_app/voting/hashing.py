from __future__ import annotations

import datetime
import hashlib
from typing import Protocol

from django.conf import settings
from django.utils.module_loading import import_string

BLANK_VOTE_MARKER = "blank"


class VerificationHasher(Protocol):
    def __call__(
        self,
        *,
        election_id: int,
        candidate_id: int | None,
        cast_at: datetime.datetime,
        nonce: str,
    ) -> str: ...


def sha256_verification_hash(
    *,
    election_id: int,
    candidate_id: int | None,
    cast_at: datetime.datetime,
    nonce: str,
) -> str:
    # The voter is never part of the input.
    choice = str(candidate_id) if candidate_id is not None else BLANK_VOTE_MARKER
    material = f"{election_id}|{choice}|{cast_at.isoformat()}|{nonce}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def get_verification_hasher() -> VerificationHasher:
    return import_string(settings.VOTE_VERIFICATION_HASHER)
