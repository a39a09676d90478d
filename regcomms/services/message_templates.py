"""Message content rendering.

Templates use ``{{variable}}`` placeholders over a fixed variable set.
Unknown placeholders render as an empty string. Variable values are
HTML-escaped when the target content is HTML.
"""

import html
import re
from datetime import datetime

from regcomms.models.communication import CommunicationType
from regcomms.schemas.incident import IncidentSnapshot
from regcomms.schemas.stakeholder import StakeholderInfo

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
TAG_PATTERN = re.compile(r"<[^>]+>")

TEMPLATE_VARIABLES = (
    "incident_number",
    "incident_title",
    "incident_severity",
    "incident_status",
    "incident_description",
    "occurred_at",
    "stakeholder_name",
    "stakeholder_role",
    "current_time",
    "escalation_level",
)

_DATETIME_FORMAT = "%Y-%m-%d %H:%M UTC"


def build_variables(
    incident: IncidentSnapshot,
    stakeholder: StakeholderInfo | None,
    now: datetime,
    escalation_level: int | None = None,
) -> dict[str, str]:
    """Template variables for an incident and, optionally, one stakeholder."""
    occurred = incident.occurred_at or incident.detected_at or now
    return {
        "incident_number": incident.incident_number or str(incident.id),
        "incident_title": incident.title or incident.incident_type or "Incident",
        "incident_severity": incident.severity.value,
        "incident_status": incident.status,
        "incident_description": incident.description,
        "occurred_at": occurred.strftime(_DATETIME_FORMAT),
        "stakeholder_name": stakeholder.name if stakeholder else "",
        "stakeholder_role": stakeholder.role.value if stakeholder else "",
        "current_time": now.strftime(_DATETIME_FORMAT),
        "escalation_level": str(escalation_level) if escalation_level else "N/A",
    }


def render(text: str, variables: dict[str, str], escape_html: bool = False) -> str:
    """Replace ``{{name}}`` placeholders; unmatched names become ''."""

    def _substitute(match: re.Match) -> str:
        value = variables.get(match.group(1), "")
        return html.escape(value) if escape_html else value

    return PLACEHOLDER_PATTERN.sub(_substitute, text)


def strip_html(content: str) -> str:
    """Plain-text version of HTML content for SMS and chat transports."""
    text = TAG_PATTERN.sub(" ", content)
    text = html.unescape(text)
    return " ".join(text.split())


_INCIDENT_FACTS = (
    "<ul>"
    "<li><strong>Incident ID:</strong> {{incident_number}}</li>"
    "<li><strong>Title:</strong> {{incident_title}}</li>"
    "<li><strong>Severity:</strong> {{incident_severity}}</li>"
)

DEFAULT_TEMPLATES: dict[CommunicationType, tuple[str, str]] = {
    CommunicationType.INITIAL_NOTIFICATION: (
        "[{{incident_severity}}] Incident {{incident_number}}: {{incident_title}}",
        "<h2>Incident Notification</h2>"
        "{{greeting}}"
        "<p>A new {{incident_severity}} severity incident has been reported:</p>"
        + _INCIDENT_FACTS
        + "<li><strong>Occurred At:</strong> {{occurred_at}}</li>"
        "<li><strong>Description:</strong> {{incident_description}}</li>"
        "</ul>"
        "<p>Please acknowledge receipt of this notification.</p>",
    ),
    CommunicationType.ESCALATION: (
        "[ESCALATION] Incident {{incident_number}} - Level {{escalation_level}}",
        "<h2>Escalation Notice</h2>"
        "{{greeting}}"
        "<p>This incident has been escalated to your attention:</p>"
        + _INCIDENT_FACTS
        + "<li><strong>Escalation Level:</strong> {{escalation_level}}</li>"
        "</ul>"
        "<p><strong>Immediate acknowledgment and action required.</strong></p>",
    ),
    CommunicationType.STATUS_UPDATE: (
        "[UPDATE] Incident {{incident_number}}: {{incident_status}}",
        "<h2>Incident Status Update</h2>"
        "{{greeting}}"
        "<p>Status update for incident {{incident_number}}:</p>"
        "<ul>"
        "<li><strong>New Status:</strong> {{incident_status}}</li>"
        "<li><strong>Updated At:</strong> {{current_time}}</li>"
        "</ul>",
    ),
    CommunicationType.RESOLUTION: (
        "[RESOLVED] Incident {{incident_number}}",
        "<h2>Incident Resolved</h2>"
        "{{greeting}}"
        "<p>Incident {{incident_number}} has been resolved.</p>"
        "<p>A post-incident report will follow.</p>",
    ),
    CommunicationType.POST_INCIDENT: (
        "[POST-INCIDENT] Report for {{incident_number}}",
        "<h2>Post-Incident Report</h2><p>Please see attached report.</p>",
    ),
    CommunicationType.REGULATORY_REPORT: (
        "[REGULATORY] {{incident_number}} - Incident Report",
        "<h2>Regulatory Incident Report</h2>"
        "<p>This is an official incident report as required by regulation.</p>",
    ),
    CommunicationType.CUSTOMER_ADVISORY: (
        "Service Advisory: {{incident_title}}",
        "<h2>Service Advisory</h2><p>We are aware of an issue affecting our services.</p>",
    ),
    CommunicationType.PUBLIC_STATEMENT: (
        "Public Statement: {{incident_title}}",
        "<h2>Public Statement</h2><p>Official statement regarding the incident.</p>",
    ),
    CommunicationType.INTERNAL_BRIEFING: (
        "[INTERNAL] Briefing: {{incident_number}}",
        "<h2>Internal Briefing</h2><p>Internal stakeholder briefing.</p>",
    ),
}


def default_content(
    communication_type: CommunicationType,
    variables: dict[str, str],
) -> tuple[str, str]:
    """Built-in (subject, HTML body) for a communication type."""
    subject_template, body_template = DEFAULT_TEMPLATES[communication_type]
    name = variables.get("stakeholder_name")
    greeting = f"<p>Dear {html.escape(name)},</p>" if name else ""
    # Greeting goes in after rendering so a name is never read as a placeholder
    body = greeting.join(
        render(part, variables, escape_html=True) for part in body_template.split("{{greeting}}")
    )
    return render(subject_template, variables), body
