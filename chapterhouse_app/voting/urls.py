from django.urls import path

from voting import views_elections, views_health, views_voting

urlpatterns = [
    path("healthz", views_health.healthz, name="healthz"),
    path("readyz", views_health.readyz, name="readyz"),
    path("api/voting/validate-link/", views_voting.voting_validate_link, name="voting-validate-link"),
    path("api/voting/vote/", views_voting.voting_cast_vote, name="voting-cast-vote"),
    path("api/elections/<int:election_id>/results/", views_elections.election_results, name="election-results"),
    path(
        "api/elections/<int:election_id>/results/export/",
        views_elections.election_results_export,
        name="election-results-export",
    ),
    path(
        "api/elections/<int:election_id>/voting-links/",
        views_elections.election_voting_links,
        name="election-voting-links",
    ),
    path("api/voting-links/<int:link_id>/revoke/", views_elections.voting_link_revoke, name="voting-link-revoke"),
    path(
        "api/elections/<int:election_id>/<str:action>/",
        views_elections.election_lifecycle,
        name="election-lifecycle",
    ),
    path("api/votes/<int:vote_id>/invalidate/", views_elections.vote_invalidate, name="vote-invalidate"),
]
