"""Email templates — invitation, award and rejection messages.

Rendered with Jinja2 from autorfp/templates/emails. HTML templates are
autoescaped; plain-text templates are not.

Called by: services/invitations.py, services/delivery.py
"""

from dataclasses import dataclass
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

_jinja_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).resolve().parent.parent / "templates" / "emails")),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


@dataclass
class RenderedEmail:
    subject: str
    text: str
    html: str | None = None


def _format_cap(request) -> str:
    if request.cap_amount is None:
        return "Not specified"
    return f"{request.cap_amount} {request.currency or 'USD'}"


def render_invitation(request, participant) -> RenderedEmail:
    title = request.title or "RFP"
    ctx = {
        "request": request,
        "participant": participant,
        "items": list(request.items),
        "budget": _format_cap(request),
        "deadline": f"{request.deadline_days} days" if request.deadline_days else "Not specified",
        "warranty": (
            f"{request.min_warranty_months} months"
            if request.min_warranty_months is not None
            else "Not specified"
        ),
    }
    return RenderedEmail(
        subject=f"RFP: {title}",
        text=_jinja_env.get_template("invitation.txt").render(**ctx).strip(),
        html=_jinja_env.get_template("invitation.html").render(**ctx).strip(),
    )


def render_award(request, participant) -> RenderedEmail:
    return RenderedEmail(
        subject=f"Proposal Awarded - {request.title}",
        text=_jinja_env.get_template("award.txt").render(
            request=request, participant=participant
        ).strip(),
    )


def render_rejection(request, participant, auto: bool = False) -> RenderedEmail:
    """auto=True for siblings rejected by an award, False for a manual reject."""
    name = "rejection_auto.txt" if auto else "rejection_manual.txt"
    return RenderedEmail(
        subject=f'RFP "{request.title}" - Proposal Status Update',
        text=_jinja_env.get_template(name).render(request=request, participant=participant).strip(),
    )
