import datetime
import logging
from collections.abc import Mapping

import post_office.mail
from django.conf import settings
from django.db import transaction
from django.template import engines
from django.utils import timezone
from post_office.models import Email, EmailTemplate

logger = logging.getLogger(__name__)


def _format_expiry(value: datetime.datetime | None) -> str:
    if value is None:
        return ""
    if timezone.is_naive(value):
        value = timezone.make_aware(value, timezone=datetime.UTC)
    return timezone.localtime(value).strftime("%Y-%m-%d %H:%M %Z")


def queue_templated_email(
    *,
    recipients: list[str],
    template_name: str,
    context: Mapping[str, object],
) -> Email:
    """Render an EmailTemplate now and queue the result with django-post-office.

    Rendering up front means a template edited in the admin after queueing
    does not change mail that is already waiting for delivery.
    """
    template = EmailTemplate.objects.get(name=template_name)
    template_engine = engines["post_office"]

    rendered_subject = template_engine.from_string(template.subject or "").render(dict(context))
    rendered_text = template_engine.from_string(template.content or "").render(dict(context))
    rendered_html = template_engine.from_string(template.html_content or "").render(dict(context))

    return post_office.mail.send(
        recipients=recipients,
        sender=settings.DEFAULT_FROM_EMAIL,
        subject=rendered_subject.strip(),
        message=rendered_text,
        html_message=rendered_html,
        commit=True,
    )


def send_voting_link(
    *,
    to: str,
    name: str,
    election_title: str,
    vote_url: str,
    expires_at: datetime.datetime | None,
) -> bool:
    """Queue a voting link email. Returns False instead of raising on failure."""
    recipient = str(to or "").strip()
    if not recipient:
        return False

    context: dict[str, object] = {
        "name": name,
        "election_title": election_title,
        "vote_url": vote_url,
        "expires_at": _format_expiry(expires_at),
    }

    try:
        # Savepoint so a failed insert does not poison the caller's transaction.
        with transaction.atomic():
            queue_templated_email(
                recipients=[recipient],
                template_name=settings.VOTING_LINK_EMAIL_TEMPLATE_NAME,
                context=context,
            )
    except Exception:
        logger.exception(
            "Failed to queue voting link email",
            extra={
                "event": "chapterhouse.voting.email.queue_failed",
                "component": "voting",
                "outcome": "error",
                "template_name": settings.VOTING_LINK_EMAIL_TEMPLATE_NAME,
            },
        )
        return False

    return True
