from __future__ import annotations

import logging
from collections.abc import Callable
from typing import override

from django.contrib import admin, messages

from voting import elections_services
from voting.errors import VotingError
from voting.models import AuditLogEntry, Candidate, Center, Election, EnabledVoter, Group, Person, Site

logger = logging.getLogger(__name__)


@admin.register(Center)
class CenterAdmin(admin.ModelAdmin):
    list_display = ("code", "name")
    search_fields = ("code", "name")


@admin.register(Site)
class SiteAdmin(admin.ModelAdmin):
    list_display = ("name", "center")
    list_filter = ("center",)
    search_fields = ("name",)


@admin.register(Group)
class GroupAdmin(admin.ModelAdmin):
    list_display = ("number", "program_name", "slot", "center", "site", "is_active")
    list_filter = ("is_active", "slot", "center")
    search_fields = ("number", "program_name")


@admin.register(Person)
class PersonAdmin(admin.ModelAdmin):
    list_display = ("document_number", "first_name", "last_name", "group", "is_active")
    list_filter = ("is_active", "document_type")
    search_fields = ("document_number", "first_name", "last_name")
    raw_id_fields = ("group",)


class CandidateInline(admin.TabularInline):
    model = Candidate
    extra = 0
    raw_id_fields = ("person",)
    fields = ("list_number", "person", "status", "rejection_reason")
    readonly_fields = ("status", "rejection_reason")

    def _roster_editable(self, obj) -> bool:
        return obj is None or obj.status == Election.Status.configuring

    @override
    def has_add_permission(self, request, obj=None) -> bool:
        return self._roster_editable(obj) and super().has_add_permission(request, obj)

    @override
    def has_change_permission(self, request, obj=None) -> bool:
        return self._roster_editable(obj) and super().has_change_permission(request, obj)

    @override
    def has_delete_permission(self, request, obj=None) -> bool:
        return self._roster_editable(obj) and super().has_delete_permission(request, obj)


@admin.register(Election)
class ElectionAdmin(admin.ModelAdmin):
    list_display = (
        "title",
        "election_type",
        "slot",
        "status",
        "start_datetime",
        "end_datetime",
        "enabled_voter_count",
        "votes_cast_count",
    )
    list_filter = ("status", "election_type", "slot")
    search_fields = ("title",)
    readonly_fields = ("status", "sibling_key", "enabled_voter_count", "votes_cast_count", "created_at", "updated_at")
    inlines = (CandidateInline,)
    actions = (
        "activate_elections_action",
        "finalize_elections_action",
        "cancel_elections_action",
        "delete_cancelled_elections_action",
    )

    # Slot membership is fixed at creation; the rest once configuration ends.
    sibling_fields = ("election_type", "slot")
    locked_fields = ("title", "allows_blank_vote", "center", "site", "group")

    @override
    def get_readonly_fields(self, request, obj=None):
        readonly = list(super().get_readonly_fields(request, obj=obj))
        if obj is None:
            return tuple(readonly)
        frozen = list(self.sibling_fields)
        if obj.status != Election.Status.configuring:
            frozen.extend(self.locked_fields)
        readonly.extend(name for name in frozen if name not in readonly)
        return tuple(readonly)

    @override
    def get_actions(self, request):
        actions = super().get_actions(request)
        # Deletion goes through the lifecycle so only cancelled elections are removed.
        actions.pop("delete_selected", None)
        return actions

    @override
    def has_delete_permission(self, request, obj=None) -> bool:
        if obj is not None and obj.status != Election.Status.cancelled:
            return False
        return super().has_delete_permission(request, obj)

    @override
    def delete_model(self, request, obj) -> None:
        elections_services.delete_election(election=obj, actor=request.user.get_username())

    def _run_for_each(
        self,
        request,
        queryset,
        *,
        verb: str,
        operation: Callable[..., object],
    ) -> None:
        done = 0
        for election in list(queryset):
            try:
                operation(election=election, actor=request.user.get_username())
            except VotingError as exc:
                self.message_user(request, f"{election.title}: {exc}", level=messages.ERROR)
                continue
            done += 1

        if done:
            self.message_user(request, f"{verb} {done} election(s).", level=messages.SUCCESS)

    @admin.action(description="Activate selected elections", permissions=["change"])
    def activate_elections_action(self, request, queryset) -> None:
        self._run_for_each(request, queryset, verb="Activated", operation=elections_services.activate_election)

    @admin.action(description="Finalize selected elections", permissions=["change"])
    def finalize_elections_action(self, request, queryset) -> None:
        self._run_for_each(request, queryset, verb="Finalized", operation=elections_services.finalize_election)

    @admin.action(description="Cancel selected elections", permissions=["change"])
    def cancel_elections_action(self, request, queryset) -> None:
        self._run_for_each(request, queryset, verb="Cancelled", operation=elections_services.cancel_election)

    @admin.action(description="Delete selected cancelled elections", permissions=["delete"])
    def delete_cancelled_elections_action(self, request, queryset) -> None:
        self._run_for_each(request, queryset, verb="Deleted", operation=elections_services.delete_election)


@admin.register(Candidate)
class CandidateAdmin(admin.ModelAdmin):
    list_display = ("election", "list_number", "person", "status")
    list_filter = ("status", "election")
    raw_id_fields = ("person",)
    # Status changes only through the validate/reject actions.
    readonly_fields = ("status", "validated_at", "rejection_reason")
    actions = ("validate_candidates_action", "reject_candidates_action")

    def _roster_editable(self, obj) -> bool:
        return obj is None or obj.election.status == Election.Status.configuring

    @override
    def formfield_for_foreignkey(self, db_field, request, **kwargs):
        if db_field.name == "election":
            kwargs["queryset"] = Election.objects.filter(status=Election.Status.configuring)
        return super().formfield_for_foreignkey(db_field, request, **kwargs)

    @override
    def has_change_permission(self, request, obj=None) -> bool:
        return self._roster_editable(obj) and super().has_change_permission(request, obj)

    @override
    def has_delete_permission(self, request, obj=None) -> bool:
        return self._roster_editable(obj) and super().has_delete_permission(request, obj)

    @override
    def get_actions(self, request):
        actions = super().get_actions(request)
        # Bulk deletion would skip the configuration lock.
        actions.pop("delete_selected", None)
        return actions

    @override
    def delete_model(self, request, obj) -> None:
        elections_services.delete_candidate(candidate=obj, actor=request.user.get_username())

    @admin.action(description="Validate selected candidates", permissions=["change"])
    def validate_candidates_action(self, request, queryset) -> None:
        for candidate in list(queryset):
            try:
                elections_services.validate_candidate(candidate=candidate, actor=request.user.get_username())
            except VotingError as exc:
                self.message_user(request, f"Candidate {candidate.list_number}: {exc}", level=messages.ERROR)

    @admin.action(description="Reject selected candidates", permissions=["change"])
    def reject_candidates_action(self, request, queryset) -> None:
        for candidate in list(queryset):
            try:
                elections_services.reject_candidate(candidate=candidate, actor=request.user.get_username())
            except VotingError as exc:
                self.message_user(request, f"Candidate {candidate.list_number}: {exc}", level=messages.ERROR)


@admin.register(EnabledVoter)
class EnabledVoterAdmin(admin.ModelAdmin):
    list_display = ("election", "person")
    list_filter = ("election",)
    raw_id_fields = ("person",)

    @override
    def has_add_permission(self, request) -> bool:
        return False


@admin.register(AuditLogEntry)
class AuditLogEntryAdmin(admin.ModelAdmin):
    list_display = ("timestamp", "election", "event_type", "actor")
    list_filter = ("event_type",)
    readonly_fields = ("election", "timestamp", "event_type", "payload", "actor")

    @override
    def has_add_permission(self, request) -> bool:
        return False

    @override
    def has_change_permission(self, request, obj=None) -> bool:
        return False
