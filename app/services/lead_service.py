"""Lead service — capture, list, and update inbound leads.

Leads are written by anonymous visitors on a tenant's public funnel page
(/p/<slug>) and read by the owner from the dashboard.

Two storage eras coexist:
  - Supabase configured: leads are rows in `inbound_leads`, keyed to the
    tenant by `project_id`.
  - Otherwise (or if the insert fails): leads are appended to the `leads`
    list inside the local project blob.

A lead is never rejected because its tenant can't be resolved: it is stored
with project_id = None and has to be reconciled by hand. Lead insert and the
`lead_created` analytics event are not transactional; a failed event append
never undoes the insert.

Nothing here raises to the caller.
"""

import html
import logging

import bleach
from flask import current_app, has_app_context

from app.models.project import (
    DEFAULT_LEAD_SOURCE,
    DEFAULT_LEAD_STATUS,
    build_event,
    build_lead,
    lead_from_row,
    lead_to_row,
    normalize_project,
    now_iso,
)
from app.services import storage_service, supabase_client
from app.services.project_store import PROJECTS_TABLE, LocalStore
from app.slugs import is_valid_slug

logger = logging.getLogger(__name__)

LEADS_TABLE = "inbound_leads"
DEFAULT_PUBLIC_PREFIX = "/p/"


def _sanitize(text):
    """Strip HTML tags from visitor input, keeping it as plain text.

    bleach escapes `&` and `<`; those are undone since leads are stored
    as JSON, not rendered markup.
    """
    if text is None:
        return text
    return html.unescape(bleach.clean(text, tags=[], strip=True)).strip()


def _public_prefix():
    if has_app_context():
        return current_app.config.get("PUBLIC_PATH_PREFIX", DEFAULT_PUBLIC_PREFIX)
    return DEFAULT_PUBLIC_PREFIX


def slug_from_path(path):
    """Return the slug segment of a public URL path, or None.

    "/p/joes-pizza"      -> "joes-pizza"
    "/p/joes-pizza/lead" -> "joes-pizza"
    "/dashboard"         -> None
    """
    prefix = _public_prefix()
    if not path or not path.startswith(prefix):
        return None
    slug = path[len(prefix):].split("/", 1)[0].strip()
    return slug or None


def resolve_project_id_for_slug(slug):
    """Look up the tenant id owning `slug`. None when it can't be resolved."""
    slug = (slug or "").strip().lower()
    if not is_valid_slug(slug):
        return None
    if not supabase_client.is_supabase_configured():
        return None

    try:
        rows = supabase_client.select(
            PROJECTS_TABLE,
            columns="user_id",
            filters={"public_slug": ("ilike", slug)},
            limit=1,
        )
    except Exception as e:
        logger.warning(f"Could not resolve project for slug {slug}: {e}")
        return None

    if not rows:
        logger.warning(f"No project found for slug {slug}")
        return None
    return rows[0].get("user_id")


# ──────────────────────────────────────────────
# Capture
# ──────────────────────────────────────────────

def _bare_project():
    """Blob holding leads captured before any project was saved locally."""
    return {
        "blueprint": None,
        "clients": [],
        "automations": [],
        "events": [],
        "growthPlan": None,
        "leads": [],
    }


def _insert_remote(lead):
    if not supabase_client.is_supabase_configured():
        return False
    try:
        supabase_client.insert(LEADS_TABLE, lead_to_row(lead))
    except Exception as e:
        logger.error(f"Lead insert failed, falling back to local storage: {e}")
        return False
    logger.info(f"Lead {lead['id']} stored in {LEADS_TABLE} (project: {lead['projectId']})")
    return True


def _append_local(lead):
    def append(envelope):
        data = envelope.get("data") if envelope else None
        project = normalize_project(data)
        if project is None:
            project = data if isinstance(data, dict) else _bare_project()
        project["leads"] = list(project.get("leads") or []) + [lead]
        return {"data": project, "lastUpdated": now_iso()}

    try:
        LocalStore().modify(append)
    except Exception as e:
        logger.error(f"Failed to store lead {lead['id']} locally: {e}")
        return False
    logger.info(f"Lead {lead['id']} stored in local project blob")
    return True


def _emit_event(event, project_id):
    """Append an event to the tenant's project. Best-effort, never raises."""
    if project_id is None and supabase_client.is_supabase_configured():
        logger.warning(f"{event['type']} event skipped: no project to attach it to")
        return False
    try:
        return storage_service.track_event(event, tenant_id=project_id)
    except Exception as e:
        logger.error(f"Failed to record {event['type']} event: {e}")
        return False


def submit_lead(name, email, phone=None, message=None, source=None,
                path=None, tenant_id=None):
    """Record an inbound lead against the right tenant.

    Args:
        name, email, phone, message: visitor input (HTML stripped).
        source:    Tag such as "Website" or "Referral".
        path:      Request path. A public path (/p/<slug>) selects the
                   tenant by slug; anything else is an owner capture.
        tenant_id: Authenticated tenant, used for owner captures.

    Returns:
        The stored lead dict, or None if no store accepted it.
    """
    slug = slug_from_path(path)
    if slug:
        project_id = resolve_project_id_for_slug(slug)
        if project_id is None:
            logger.warning(f"Lead for unresolved slug {slug} stored without a project")
    else:
        project_id = tenant_id

    lead = build_lead(
        name=_sanitize(name),
        email=_sanitize(email),
        phone=_sanitize(phone) or None,
        message=_sanitize(message) or None,
        source=_sanitize(source) or DEFAULT_LEAD_SOURCE,
        project_id=project_id,
    )

    if not (_insert_remote(lead) or _append_local(lead)):
        logger.error(f"Lead from {lead['email']} could not be stored anywhere")
        return None

    _emit_event(build_event("lead_created", {"source": lead["source"]}), project_id)
    return lead


def track_page_view(slug):
    """Record a `page_view` event for the tenant behind a public slug."""
    project_id = resolve_project_id_for_slug(slug)
    return _emit_event(build_event("page_view", {"slug": slug}), project_id)


# ──────────────────────────────────────────────
# Read / update
# ──────────────────────────────────────────────

def _local_leads():
    try:
        envelope = LocalStore().read()
    except Exception as e:
        logger.error(f"Failed to read local leads: {e}")
        return []
    data = (envelope or {}).get("data") or {}
    leads = []
    for lead in data.get("leads") or []:
        lead = dict(lead)
        lead.setdefault("projectId", None)
        lead["status"] = lead.get("status") or DEFAULT_LEAD_STATUS
        lead["source"] = lead.get("source") or DEFAULT_LEAD_SOURCE
        leads.append(lead)
    leads.sort(key=lambda l: l.get("createdAt") or "", reverse=True)
    return leads


def fetch_leads(tenant_id=None):
    """All leads for a tenant, newest first.

    Without Supabase the leads embedded in the local blob are returned.
    A Supabase error yields [].
    """
    if not supabase_client.is_supabase_configured():
        return _local_leads()

    filters = {"project_id": tenant_id} if tenant_id else None
    try:
        rows = supabase_client.select(
            LEADS_TABLE, columns="*", filters=filters, order="created_at.desc"
        )
    except Exception as e:
        logger.error(f"Fetch leads error: {e}")
        return []
    return [lead_from_row(row) for row in rows or []]


def update_lead_status(lead_id, status):
    """Set a lead's status. Any status may follow any other.

    Returns True if the write went through.
    """
    if supabase_client.is_supabase_configured():
        try:
            supabase_client.update(LEADS_TABLE, {"status": status}, {"id": lead_id})
        except Exception as e:
            logger.error(f"Lead {lead_id} status update failed: {e}")
            return False
        return True

    def set_status(envelope):
        project = (envelope or {}).get("data") or {}
        leads = project.get("leads") or []
        if not any(lead.get("id") == lead_id for lead in leads):
            raise LookupError(f"Lead {lead_id} not found in local storage")
        project["leads"] = [
            {**lead, "status": status} if lead.get("id") == lead_id else lead
            for lead in leads
        ]
        return {"data": project, "lastUpdated": now_iso()}

    try:
        LocalStore().modify(set_status)
    except LookupError as e:
        logger.warning(str(e))
        return False
    except Exception as e:
        logger.error(f"Lead {lead_id} local status update failed: {e}")
        return False
    return True
