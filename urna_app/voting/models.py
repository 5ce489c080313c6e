from __future__ import annotations

import re
import uuid
from typing import override

from django.db import models
from django.db.models import Q
from django.utils import timezone

_NON_WORD_RE = re.compile(r"[^0-9a-z]+")


def election_title_root(*, title: str, slot: str) -> str:
    """Return the title of an election with its slot label removed.

    "Representante de Centro - Nocturna" with slot "nocturna" and
    "Representante de centro (mixta)" with slot "mixta" share the root
    "representante de centro".
    """

    root = str(title or "")
    slot = str(slot or "").strip()
    if slot:
        pattern = re.escape(slot).replace("_", r"[_\s]")
        root = re.sub(pattern, " ", root, flags=re.IGNORECASE)
    return _NON_WORD_RE.sub(" ", root.casefold()).strip()


def new_sibling_key() -> str:
    return f"{Election.ElectionType.center_representative}:{uuid.uuid4().hex}"


class Center(models.Model):
    code = models.CharField(max_length=32, unique=True)
    name = models.CharField(max_length=255)

    class Meta:
        ordering = ("name",)

    def __str__(self) -> str:
        return f"{self.code} {self.name}"


class Site(models.Model):
    center = models.ForeignKey(Center, on_delete=models.PROTECT, related_name="sites")
    name = models.CharField(max_length=255)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["center", "name"], name="uniq_site_center_name"),
        ]
        ordering = ("center_id", "name")

    def __str__(self) -> str:
        return self.name


class Group(models.Model):
    """A cohort ("ficha") of people; the unit a voter belongs to."""

    number = models.CharField(max_length=32, unique=True)
    program_name = models.CharField(max_length=255, blank=True, default="")
    slot = models.CharField(max_length=32, blank=True, default="", db_index=True)
    center = models.ForeignKey(Center, on_delete=models.PROTECT, null=True, blank=True, related_name="groups")
    site = models.ForeignKey(Site, on_delete=models.PROTECT, null=True, blank=True, related_name="groups")
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ("number",)

    @override
    def save(self, *args, **kwargs) -> None:
        self.number = str(self.number or "").strip()
        self.slot = str(self.slot or "").strip().lower()
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return self.number


class Person(models.Model):
    class DocumentType(models.TextChoices):
        citizenship_card = "CC", "Citizenship card"
        identity_card = "TI", "Identity card"
        foreigner_id = "CE", "Foreigner ID"
        passport = "PA", "Passport"
        special_permit = "PEP", "Special permit"

    document_type = models.CharField(max_length=8, choices=DocumentType.choices, default=DocumentType.citizenship_card)
    document_number = models.CharField(max_length=32, unique=True)
    first_name = models.CharField(max_length=150)
    last_name = models.CharField(max_length=150, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    group = models.ForeignKey(Group, on_delete=models.PROTECT, null=True, blank=True, related_name="members")
    is_active = models.BooleanField(default=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["document_type", "document_number"], name="uniq_person_document"),
        ]
        ordering = ("last_name", "first_name")

    def __str__(self) -> str:
        return f"{self.full_name} ({self.document_number})"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Election(models.Model):
    class Status(models.TextChoices):
        configuring = "configuracion", "Configuring"
        active = "activa", "Active"
        finalized = "finalizada", "Finalized"
        cancelled = "cancelada", "Cancelled"

    class ElectionType(models.TextChoices):
        group_representative = "group_representative", "Group representative"
        site_leader = "site_leader", "Site leader"
        center_representative = "center_representative", "Center representative"

    title = models.CharField(max_length=150)
    description = models.TextField(blank=True, default="")
    election_type = models.CharField(max_length=32, choices=ElectionType.choices)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.configuring, db_index=True)
    start_datetime = models.DateTimeField()
    end_datetime = models.DateTimeField()
    # Only center-representative elections are split by slot ("jornada").
    slot = models.CharField(max_length=32, blank=True, default="")
    # Shared by the elections created together as one split election; fixed at creation.
    sibling_key = models.CharField(max_length=255, blank=True, default="", db_index=True, editable=False)
    allows_blank_vote = models.BooleanField(default=True)

    center = models.ForeignKey(Center, on_delete=models.PROTECT, null=True, blank=True, related_name="elections")
    site = models.ForeignKey(Site, on_delete=models.PROTECT, null=True, blank=True, related_name="elections")
    group = models.ForeignKey(Group, on_delete=models.PROTECT, null=True, blank=True, related_name="elections")

    enabled_voter_count = models.PositiveIntegerField(default=0)
    votes_cast_count = models.PositiveIntegerField(default=0)

    created_by = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=(
                    (Q(election_type="center_representative") & ~Q(slot=""))
                    | (~Q(election_type="center_representative") & Q(slot=""))
                ),
                name="chk_election_slot_iff_center_representative",
            ),
            models.CheckConstraint(
                condition=Q(start_datetime__lt=models.F("end_datetime")),
                name="chk_election_window_ordered",
            ),
            models.UniqueConstraint(
                fields=["sibling_key", "slot"],
                condition=~Q(sibling_key=""),
                name="uniq_election_sibling_slot",
            ),
        ]
        ordering = ("-start_datetime", "id")

    def __str__(self) -> str:
        if self.slot:
            return f"{self.title} [{self.slot}]"
        return self.title

    @override
    def save(self, *args, **kwargs) -> None:
        self.slot = str(self.slot or "").strip().lower()
        if self.election_type != self.ElectionType.center_representative:
            self.sibling_key = ""
        elif not self.sibling_key:
            self.sibling_key = new_sibling_key()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "election_type" in update_fields:
            kwargs["update_fields"] = {*update_fields, "sibling_key"}
        super().save(*args, **kwargs)

    @property
    def title_root(self) -> str:
        return election_title_root(title=self.title, slot=self.slot)

    @property
    def vote_scope_key(self) -> str:
        """Scope in which a person may hold at most one vote.

        Sibling elections share their sibling key; every other election is its
        own scope. Renaming an election never moves it to another scope.
        """

        if self.sibling_key:
            return self.sibling_key
        return f"election:{self.pk}"

    def sibling_elections(self) -> models.QuerySet[Election]:
        if not self.sibling_key:
            return Election.objects.none()
        return Election.objects.filter(sibling_key=self.sibling_key).exclude(pk=self.pk).exclude(slot=self.slot)

    def is_within_window(self, now=None) -> bool:
        now = now or timezone.now()
        return self.start_datetime <= now <= self.end_datetime

    @property
    def turnout_percent(self) -> float:
        if not self.enabled_voter_count:
            return 0.0
        return round(self.votes_cast_count * 100 / self.enabled_voter_count, 2)


class Candidate(models.Model):
    class Status(models.TextChoices):
        pending = "pending", "Pending"
        validated = "validated", "Validated"
        rejected = "rejected", "Rejected"

    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="candidates")
    person = models.ForeignKey(Person, on_delete=models.PROTECT, related_name="candidacies")
    list_number = models.PositiveIntegerField()
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.pending, db_index=True)
    proposals = models.TextField(blank=True, default="")
    rejection_reason = models.TextField(blank=True, default="")
    validated_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["election", "list_number"], name="uniq_candidate_election_list_number"),
            models.UniqueConstraint(fields=["election", "person"], name="uniq_candidate_election_person"),
        ]
        ordering = ("election_id", "list_number")

    def __str__(self) -> str:
        return f"#{self.list_number} {self.person.full_name}"


class EnabledVoter(models.Model):
    """Roster row: the person may vote in the election."""

    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="enabled_voters")
    person = models.ForeignKey(Person, on_delete=models.CASCADE, related_name="enabled_for")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["election", "person"], name="uniq_enabledvoter_election_person"),
        ]

    def __str__(self) -> str:
        return f"{self.election_id}:{self.person_id}"


class Vote(models.Model):
    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="votes")
    # NULL is a blank vote.
    candidate = models.ForeignKey(
        Candidate,
        on_delete=models.RESTRICT,
        null=True,
        blank=True,
        related_name="votes",
    )
    # Eligibility enforcement only; reporting code never reads it next to `candidate`.
    person = models.ForeignKey(Person, on_delete=models.PROTECT, related_name="+")
    scope_key = models.CharField(max_length=255)
    verification_hash = models.CharField(max_length=64, unique=True)
    cast_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["election", "person"], name="uniq_vote_election_person"),
            models.UniqueConstraint(fields=["scope_key", "person"], name="uniq_vote_scope_person"),
        ]

    def __str__(self) -> str:
        return self.verification_hash


class AuditLogEntry(models.Model):
    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="audit_log")
    timestamp = models.DateTimeField(default=timezone.now)
    event_type = models.CharField(max_length=64)
    payload = models.JSONField(blank=True, default=dict)
    actor = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        indexes = [
            models.Index(fields=["election", "timestamp"], name="audit_election_ts"),
            models.Index(fields=["event_type"], name="audit_event_type"),
        ]
        ordering = ("timestamp", "id")

    def __str__(self) -> str:
        return f"{self.election_id} {self.event_type}"
