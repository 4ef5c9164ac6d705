from django.apps import AppConfig


class VotingConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "voting"
    verbose_name = "Voting"

    def ready(self) -> None:
        # Connects the results cache invalidation receiver to the vote-update signal.
        from voting import results_cache  # noqa: F401
