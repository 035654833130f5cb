"""Storage service — save/load the Project aggregate.

Supabase first (when configured and a tenant is authenticated), local
fallback store otherwise. See project_store for the stores themselves.

Contract: no public function here raises. Failures are logged and turned
into a falsy return value; the only durability signal a caller gets is the
boolean from save_project().

Usage:
    from app.services import storage_service

    storage_service.save_project(project, tenant_id=current_user.id)
    saved = storage_service.load_project(tenant_id=current_user.id)
    if saved:
        project = saved["data"]
"""

import copy
import logging

from app.models.project import normalize_project, now_iso, public_view
from app.services.project_store import LocalStore, get_project_store
from app.slugs import is_valid_slug

logger = logging.getLogger(__name__)


def _envelope(project, last_updated=None):
    return {"data": project, "lastUpdated": last_updated or now_iso()}


def save_project(project, tenant_id=None):
    """Persist the whole project. Returns True if any store accepted it.

    A Supabase failure is logged and masked by a successful local write;
    False means the local write failed too.
    """
    try:
        envelope = _envelope(copy.deepcopy(project))
    except Exception as e:
        logger.error(f"Failed to prepare project for saving: {e}")
        return False
    saved = get_project_store().write(envelope, tenant_id)
    if not saved:
        logger.error("Project could not be saved to any store.")
    return saved


def load_project(tenant_id=None):
    """Return the tenant's SavedProject envelope, or None for a fresh tenant.

    The project is normalized (legacy shape migrated, missing collections
    filled) before it is returned.
    """
    envelope = get_project_store().read(tenant_id)
    if envelope is None:
        return None
    project = normalize_project(envelope.get("data"))
    if project is None:
        return None
    return _envelope(project, envelope.get("lastUpdated"))


def load_public_by_slug(slug):
    """Public (no-auth) lookup by slug, with private collections stripped."""
    slug = (slug or "").strip().lower()
    if not is_valid_slug(slug):
        return None
    envelope = get_project_store().find_by_slug(slug)
    if envelope is None:
        return None
    project = normalize_project(envelope.get("data"))
    if project is None:
        return None
    return _envelope(public_view(project), envelope.get("lastUpdated"))


def track_event(event, tenant_id=None):
    """Append an AnalyticsEvent to the tenant's project (best-effort)."""
    saved = load_project(tenant_id)
    if saved is None:
        logger.warning(f"Event {event.get('type')} dropped: no project to attach it to.")
        return False
    project = saved["data"]
    project["events"] = project["events"] + [event]
    return save_project(project, tenant_id)


def save_growth_plan(plan, tenant_id=None):
    """Replace the project's growth plan wholesale."""
    saved = load_project(tenant_id)
    if saved is None:
        return False
    project = saved["data"]
    project["growthPlan"] = plan
    return save_project(project, tenant_id)


def reset_local_data():
    """Wipe the local fallback store ("reset system data")."""
    store = LocalStore()
    try:
        removed = store.clear()
    except OSError as e:
        logger.error(f"Failed to reset local data at {store.path}: {e}")
        return False
    logger.info(f"Local data reset ({'removed' if removed else 'nothing stored'}).")
    return True
