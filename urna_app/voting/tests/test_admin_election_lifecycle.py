from __future__ import annotations

from django.contrib import admin
from django.contrib.auth import get_user_model
from django.test import RequestFactory, TestCase
from django.urls import reverse

from voting.admin import CandidateAdmin, ElectionAdmin
from voting.models import AuditLogEntry, Candidate, Election
from voting.tests.voting_fixtures import make_candidate, make_election, make_person, make_slot_elections, make_vote


class AdminElectionLifecycleActionTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        admin_user = get_user_model().objects.create_superuser("alice", "alice@example.com", "pw")
        self.client.force_login(admin_user)
        self.changelist_url = reverse("admin:voting_election_changelist")

    def _run_action(self, action: str, *elections: Election):
        return self.client.post(
            self.changelist_url,
            data={"action": action, "_selected_action": [str(e.id) for e in elections]},
            follow=False,
        )

    def test_activate_action_activates_configured_election(self) -> None:
        election = make_election(status=Election.Status.configuring)
        make_candidate(election, make_person("701"))

        resp = self._run_action("activate_elections_action", election)

        self.assertEqual(resp.status_code, 302)
        election.refresh_from_db()
        self.assertEqual(election.status, Election.Status.active)
        self.assertTrue(
            AuditLogEntry.objects.filter(election=election, event_type="election_activated", actor="alice").exists()
        )

    def test_activate_action_reports_elections_without_candidates(self) -> None:
        election = make_election(status=Election.Status.configuring)

        resp = self._run_action("activate_elections_action", election)

        self.assertEqual(resp.status_code, 302)
        election.refresh_from_db()
        self.assertEqual(election.status, Election.Status.configuring)

    def test_finalize_and_cancel_actions(self) -> None:
        to_finalize = make_election(title="Finalize me")
        to_cancel = make_election(title="Cancel me")
        make_vote(to_cancel, make_person("123"))

        self._run_action("finalize_elections_action", to_finalize)
        self._run_action("cancel_elections_action", to_cancel)

        to_finalize.refresh_from_db()
        to_cancel.refresh_from_db()
        self.assertEqual(to_finalize.status, Election.Status.finalized)
        self.assertEqual(to_cancel.status, Election.Status.cancelled)
        self.assertEqual(to_cancel.votes.count(), 1)

    def test_delete_action_only_removes_cancelled_elections(self) -> None:
        active = make_election(title="Still running")
        cancelled = make_election(title="Called off", status=Election.Status.cancelled)
        make_candidate(cancelled, make_person("701"))

        resp = self._run_action("delete_cancelled_elections_action", active, cancelled)

        self.assertEqual(resp.status_code, 302)
        self.assertTrue(Election.objects.filter(pk=active.pk).exists())
        self.assertFalse(Election.objects.filter(pk=cancelled.pk).exists())
        self.assertFalse(Candidate.objects.filter(election_id=cancelled.pk).exists())

    def test_candidate_validate_action_respects_the_lock(self) -> None:
        open_election = make_election(status=Election.Status.configuring)
        locked_election = make_election(title="Running", status=Election.Status.active)
        pending = make_candidate(open_election, make_person("701"), status=Candidate.Status.pending)
        locked = make_candidate(locked_election, make_person("702"), status=Candidate.Status.pending)

        self.client.post(
            reverse("admin:voting_candidate_changelist"),
            data={"action": "validate_candidates_action", "_selected_action": [str(pending.id), str(locked.id)]},
        )

        pending.refresh_from_db()
        locked.refresh_from_db()
        self.assertEqual(pending.status, Candidate.Status.validated)
        self.assertEqual(locked.status, Candidate.Status.pending)


class AdminRosterLockTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.admin_user = get_user_model().objects.create_superuser("alice", "alice@example.com", "pw")
        self.request = RequestFactory().get("/admin/")
        self.request.user = self.admin_user
        self.election_admin = ElectionAdmin(Election, admin.site)
        self.candidate_admin = CandidateAdmin(Candidate, admin.site)

    def test_running_election_keeps_its_identity_fields(self) -> None:
        configuring = make_election(title="Draft", status=Election.Status.configuring)
        morning, evening = make_slot_elections("morning", "evening")

        draft_fields = self.election_admin.get_form(self.request, configuring).base_fields
        self.assertIn("title", draft_fields)
        self.assertNotIn("slot", draft_fields)

        running_fields = self.election_admin.get_form(self.request, morning).base_fields
        for name in ("title", "election_type", "slot", "center"):
            with self.subTest(field=name):
                self.assertNotIn(name, running_fields)
        self.assertIn("end_datetime", running_fields)
        self.assertEqual(morning.sibling_key, evening.sibling_key)

    def test_candidates_of_running_elections_are_read_only(self) -> None:
        draft = make_election(title="Draft", status=Election.Status.configuring)
        running = make_election(title="Running")
        editable = make_candidate(draft, make_person("701"), status=Candidate.Status.pending)
        locked = make_candidate(running, make_person("702"))

        self.assertTrue(self.candidate_admin.has_change_permission(self.request, editable))
        self.assertTrue(self.candidate_admin.has_delete_permission(self.request, editable))
        self.assertFalse(self.candidate_admin.has_change_permission(self.request, locked))
        self.assertFalse(self.candidate_admin.has_delete_permission(self.request, locked))
        self.assertNotIn("status", self.candidate_admin.get_form(self.request, editable).base_fields)
        self.assertNotIn("delete_selected", self.candidate_admin.get_actions(self.request))

        election_choices = self.candidate_admin.get_form(self.request)().fields["election"].queryset
        self.assertEqual(list(election_choices), [draft])

    def test_candidate_of_running_election_cannot_be_deleted(self) -> None:
        locked = make_candidate(make_election(title="Running"), make_person("702"))
        self.client.force_login(self.admin_user)

        resp = self.client.post(reverse("admin:voting_candidate_delete", args=[locked.id]), data={"post": "yes"})

        self.assertEqual(resp.status_code, 403)
        self.assertTrue(Candidate.objects.filter(pk=locked.pk).exists())
