"""Copy-paste reminder messages for testers (Slack markdown flavour)."""

import logging
from pathlib import Path
from typing import Sequence

from jinja2 import Environment, FileSystemLoader

from testpad_rounds.models import TesterSummary

logger = logging.getLogger(__name__)
TEMPLATE_DIR = Path(__file__).parent / "templates"

STATUS_ICONS = {"complete": "✅", "started": "🚧"}
DEFAULT_ICON = "⭕️"

# Above this many pending scripts only the projects are listed
PENDING_DETAIL_LIMIT = 3

_jinja = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
)


def render_reminder(tester: TesterSummary, app_url: str) -> str:
    """Detailed reminder for one tester, with a deep link per assignment."""
    template = _jinja.get_template("tester_reminder.txt.j2")
    return template.render(
        tester=tester,
        app_url=app_url.rstrip("/"),
        status_icons=STATUS_ICONS,
        default_icon=DEFAULT_ICON,
    ).strip()


def pending_detail(tester: TesterSummary) -> str:
    pending = tester.pending_assignments
    if not pending:
        return "All Clear ✅"
    if len(pending) <= PENDING_DETAIL_LIMIT:
        listed = ", ".join(f"{a.script_name} (*{a.project_name}*)" for a in pending)
        return f"⏳ Pending: {listed}"
    projects = list(dict.fromkeys(a.project_name for a in pending))
    listed = ", ".join(f"*{p}*" for p in projects)
    return f"📦 Pending: {len(pending)} scripts in {listed}"


def render_team_status(testers: Sequence[TesterSummary], app_url: str) -> str:
    """Group status check; a single tester gets the detailed reminder."""
    if len(testers) == 1:
        return render_reminder(testers[0], app_url)
    template = _jinja.get_template("team_status.txt.j2")
    rows = [{"tester": t, "detail": pending_detail(t)} for t in testers]
    logger.debug(f"Rendering team status for {len(rows)} testers")
    return template.render(rows=rows).strip()
