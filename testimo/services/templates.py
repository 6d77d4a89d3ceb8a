"""Message templates for testimonial requests.

Templates use ``{{name}}`` placeholders. Known variables:
clientName, projectName, testimonialUrl, companyName.
"""

import html
import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from testimo.channels.base import RenderedMessage
from testimo.models.client import Client
from testimo.models.project import Project
from testimo.models.reminder import ReminderChannel

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

DEFAULT_EMAIL_SUBJECT = "Please share your testimonial for {{projectName}}"
DEFAULT_EMAIL_MESSAGE = (
    "Hi {{clientName}},\n\n"
    "I hope this message finds you well!\n\n"
    "I would greatly appreciate if you could take a few minutes to share your "
    "experience working with me on {{projectName}}. Your testimonial would mean "
    "a lot and help showcase the value of my work to future clients.\n\n"
    "You can submit your testimonial using this link: {{testimonialUrl}}\n\n"
    "Thank you so much for your time and support!\n\n"
    "Best regards"
)
DEFAULT_SMS_MESSAGE = (
    "Hi {{clientName}}! Could you please share a testimonial for {{projectName}}? "
    "It would mean a lot to me. Submit here: {{testimonialUrl}}"
)


def render(template: str, variables: Mapping[str, str | None]) -> str:
    """Substitute ``{{key}}`` placeholders.

    Placeholders without a value in ``variables`` (missing or None) are
    left untouched.
    """

    def _replace(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return match.group(0) if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def build_testimonial_url(base_url: str, project_id: Any, email: str) -> str:
    """Public submission link, pre-filled with the client's email."""
    return f"{base_url.rstrip('/')}/submit/{project_id}?email={quote(email, safe='')}"


def template_variables(project: Project, client: Client, base_url: str) -> dict[str, str]:
    """Variables available to every reminder template."""
    email_settings = project.email_settings or {}
    return {
        "clientName": client.name,
        "projectName": project.name,
        "testimonialUrl": build_testimonial_url(base_url, project.id, client.email),
        "companyName": email_settings.get("fromName") or project.name,
    }


def _pick(settings: Mapping[str, Any], template_key: str | None) -> Mapping[str, Any]:
    """Resolve a named override from ``settings["templates"]``."""
    if template_key:
        override = (settings.get("templates") or {}).get(template_key)
        if isinstance(override, str):
            return {"message": override}
        if isinstance(override, Mapping):
            return override
    return settings


def _text_to_html(text: str) -> str:
    paragraphs = [p for p in text.split("\n\n") if p.strip()]
    return "".join(
        f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>" for p in paragraphs
    )


def render_message(
    channel: ReminderChannel,
    project: Project,
    client: Client,
    base_url: str,
    template_key: str | None = None,
) -> RenderedMessage:
    """Render the channel-appropriate message for one client."""
    variables = template_variables(project, client, base_url)

    if channel == ReminderChannel.SMS:
        sms_settings = project.sms_settings or {}
        chosen = _pick(sms_settings, template_key)
        body = chosen.get("message") or sms_settings.get("message") or DEFAULT_SMS_MESSAGE
        return RenderedMessage(channel=channel, text=render(body, variables))

    email_settings = project.email_settings or {}
    chosen = _pick(email_settings, template_key)
    subject = chosen.get("subject") or email_settings.get("subject") or DEFAULT_EMAIL_SUBJECT
    body = chosen.get("message") or email_settings.get("message") or DEFAULT_EMAIL_MESSAGE
    text = render(body, variables)
    return RenderedMessage(
        channel=channel,
        subject=render(subject, variables),
        text=text,
        html=_text_to_html(text),
        from_name=email_settings.get("fromName") or None,
    )
