"""Project aggregate and its records.

Projects live in Supabase (`projects.blueprint` JSON column) or in the local
fallback store, never in the SQL database, so they are plain dicts with the
camelCase keys the stored blobs use rather than SQLAlchemy models.

- Project: blueprint + clients + automations + events + growthPlan
  (+ leads, only in blobs written by the local fallback path).
- Client: CRM record. Status is free-form, no state machine.
- Lead: inbound inquiry. Any status may move to any other status.
- Automation: stub workflow with send/open counters.
- AnalyticsEvent: immutable fact, appended to Project.events.
"""

import copy
import uuid
from datetime import datetime, timezone

# -- Valid values (documentation only, nothing enforces them) --
CLIENT_STATUSES = ["Lead", "Active", "Churned"]
LEAD_STATUSES = ["New", "Contacted", "Converted", "Archived"]
EVENT_TYPES = [
    "page_view",
    "lead_created",
    "client_converted",
    "automation_triggered",
]
AUTOMATION_CHANNELS = ["Email", "WhatsApp", "SMS"]

# Collections never exposed on the public funnel page.
PRIVATE_COLLECTIONS = ("clients", "leads", "events", "automations")

DEFAULT_LEAD_STATUS = "New"
DEFAULT_LEAD_SOURCE = "Website"


def new_id():
    return str(uuid.uuid4())


def now_iso():
    return datetime.now(timezone.utc).isoformat()


def today_iso():
    return datetime.now(timezone.utc).date().isoformat()


def default_automations():
    """The automation set every project starts with."""
    return [
        {
            "id": "1",
            "name": "Weekly Client Check-in",
            "type": "WhatsApp",
            "trigger": "Every Monday 8AM",
            "status": "Active",
            "stats": {"sent": 0, "opened": "0%"},
        },
        {
            "id": "2",
            "name": "New Lead Welcome",
            "type": "Email",
            "trigger": "On Sign Up",
            "status": "Active",
            "stats": {"sent": 0, "opened": "0%"},
        },
    ]


def new_project(blueprint):
    """Project created at onboarding completion."""
    return {
        "blueprint": blueprint,
        "clients": [],
        "automations": default_automations(),
        "events": [],
        "growthPlan": None,
    }


def normalize_project(raw):
    """Coerce a stored blob into the current Project shape.

    Handles rows from the first schema, where the blueprint column held
    only the business profile (recognizable by `businessName` at the top
    level), and fills collections missing from older saves.

    Returns None if the blob holds no blueprint.
    """
    if not isinstance(raw, dict):
        return None

    if "businessName" in raw:
        project = {"blueprint": copy.deepcopy(raw)}
    else:
        project = copy.deepcopy(raw)

    if not project.get("blueprint"):
        return None

    for key in ("clients", "automations", "events"):
        if not isinstance(project.get(key), list):
            project[key] = []
    project.setdefault("growthPlan", None)
    return project


def public_view(project):
    """Copy of a project safe for anonymous visitors.

    Only the blueprint survives; client, lead, event and automation data
    is emptied and the growth plan dropped.
    """
    public = {"blueprint": copy.deepcopy(project.get("blueprint"))}
    for key in PRIVATE_COLLECTIONS:
        public[key] = []
    public["growthPlan"] = None
    return public


def build_client(data):
    """New Client record from partial input, with CRM defaults."""
    return {
        "id": new_id(),
        "name": data.get("name") or "New Client",
        "email": data.get("email") or "",
        "phone": data.get("phone") or "",
        "status": data.get("status") or "Lead",
        "program": data.get("program") or "General",
        "joinDate": today_iso(),
        "lastCheckIn": "Never",
        "progress": data.get("progress", 0),
        "notes": data.get("notes") or "",
        "tags": list(data.get("tags") or []),
    }


def build_lead(name, email, phone=None, message=None, source=None,
               project_id=None):
    return {
        "id": new_id(),
        "projectId": project_id,
        "name": name,
        "email": email,
        "phone": phone,
        "message": message,
        "status": DEFAULT_LEAD_STATUS,
        "createdAt": now_iso(),
        "source": source or DEFAULT_LEAD_SOURCE,
    }


def build_event(event_type, metadata=None):
    return {
        "id": new_id(),
        "type": event_type,
        "createdAt": now_iso(),
        "metadata": metadata or {},
    }


def lead_to_row(lead):
    """Lead dict -> `inbound_leads` row."""
    return {
        "id": lead["id"],
        "project_id": lead.get("projectId"),
        "name": lead["name"],
        "email": lead["email"],
        "phone": lead.get("phone"),
        "message": lead.get("message"),
        "status": lead.get("status") or DEFAULT_LEAD_STATUS,
        "source": lead.get("source") or DEFAULT_LEAD_SOURCE,
        "created_at": lead.get("createdAt"),
    }


def lead_from_row(row):
    """`inbound_leads` row -> Lead dict, tolerating missing columns."""
    return {
        "id": row.get("id"),
        "projectId": row.get("project_id"),
        "name": row.get("name"),
        "email": row.get("email"),
        "phone": row.get("phone"),
        "message": row.get("message"),
        "status": row.get("status") or DEFAULT_LEAD_STATUS,
        "createdAt": row.get("created_at"),
        "source": row.get("source") or DEFAULT_LEAD_SOURCE,
    }
