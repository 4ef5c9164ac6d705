from __future__ import annotations

from django.db import migrations

VOTING_LINK_TEMPLATE_NAME = "voting-link"


def add_voting_link_template(apps, schema_editor) -> None:
    EmailTemplate = apps.get_model("post_office", "EmailTemplate")

    html_content = (
        "<p>Hello{% if name %} {{ name }}{% endif %},</p>\n"
        "<p>You are invited to vote in <strong>{{ election_title }}</strong>.</p>\n"
        "<p><a href=\"{{ vote_url }}\">Open your ballot</a></p>\n"
        "<p>This link is personal and can only be used by you. "
        "It expires on {{ expires_at }}.</p>\n"
        "<p>If you did not expect this email, you can ignore it.</p>\n"
    )
    content = (
        "Hello{% if name %} {{ name }}{% endif %},\n\n"
        "You are invited to vote in {{ election_title }}.\n\n"
        "Open your ballot: {{ vote_url }}\n\n"
        "This link is personal and can only be used by you. It expires on {{ expires_at }}.\n\n"
        "If you did not expect this email, you can ignore it.\n"
    )

    EmailTemplate.objects.update_or_create(
        name=VOTING_LINK_TEMPLATE_NAME,
        defaults={
            "description": "One-time voting link for an election",
            "subject": "Your voting link for {{ election_title }}",
            "html_content": html_content,
            "content": content,
        },
    )


def noop_reverse(apps, schema_editor) -> None:
    # Keep templates on rollback to avoid losing admin edits.
    return


class Migration(migrations.Migration):
    dependencies = [
        ("voting", "0001_initial"),
        ("post_office", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(
            add_voting_link_template,
            reverse_code=noop_reverse,
        ),
    ]
