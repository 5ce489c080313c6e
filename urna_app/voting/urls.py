from django.urls import path

from voting import views_voting

urlpatterns = [
    path("api/voting/identify/", views_voting.voter_identify, name="voter-identify"),
    path("api/elections/<int:election_id>/vote/", views_voting.election_vote_cast, name="election-vote-cast"),
    path("api/elections/<int:election_id>/has-voted/", views_voting.election_has_voted, name="election-has-voted"),
    path("api/elections/<int:election_id>/results/", views_voting.election_results, name="election-results"),

    path("api/groups/persons/validate/", views_voting.group_person_validate, name="group-person-validate"),
    path("api/groups/<str:group_number>/validate/", views_voting.group_validate, name="group-validate"),

    path("api/votes/verify/", views_voting.vote_verify, name="vote-verify"),

    path("api/elections/<int:election_id>/activate/", views_voting.election_activate, name="election-activate"),
    path("api/elections/<int:election_id>/finalize/", views_voting.election_finalize, name="election-finalize"),
    path("api/elections/<int:election_id>/cancel/", views_voting.election_cancel, name="election-cancel"),
    path("api/elections/<int:election_id>/delete/", views_voting.election_delete, name="election-delete"),
]
