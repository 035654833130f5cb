"""Project stores — where the SavedProject envelope physically lives.

- RemoteStore: Supabase `projects` table, one row per tenant (user_id).
- LocalStore: one JSON file under the instance folder, holding a single
  fixed key. This is the fallback when Supabase is unconfigured or fails.
- FallbackStore: tries a primary store, then a secondary one. It is the
  only store that never raises: every failure is logged and the next store
  is tried.

The envelope is `{"data": <project>, "lastUpdated": <iso timestamp>}`.
Writes replace the whole envelope (last writer wins, no version check),
except for the local blob's `leads`: those are merged by id so a project save
never drops leads captured since the state was loaded.
"""

import json
import logging
import os
import tempfile
import threading

from flask import current_app

from app.models.project import normalize_project
from app.services import supabase_client
from app.slugs import derive_slug

logger = logging.getLogger(__name__)

LOCAL_STORAGE_KEY = "business_os_project_v2"
PROJECTS_TABLE = "projects"

# Guards read-merge-write cycles on the local blob (poller thread vs requests).
_local_lock = threading.RLock()


def merge_leads(stored, incoming):
    """Stored leads updated with `incoming` by id; unknown incoming ids appended."""
    merged = list(stored or [])
    index = {lead.get("id"): i for i, lead in enumerate(merged)}
    for lead in incoming or []:
        position = index.get(lead.get("id"))
        if position is None:
            index[lead.get("id")] = len(merged)
            merged.append(lead)
        else:
            merged[position] = lead
    return merged


class StoreUnavailable(Exception):
    """The store can't serve this call (not configured / no tenant)."""


class ProjectStore:
    """Interface shared by all project stores."""

    name = "store"

    def read(self, tenant_id=None):
        """Return the envelope for `tenant_id`, or None if there is none."""
        raise NotImplementedError

    def write(self, envelope, tenant_id=None):
        """Persist the envelope. Returns True or raises."""
        raise NotImplementedError

    def find_by_slug(self, slug):
        """Return the envelope whose public slug matches, or None."""
        raise NotImplementedError


class RemoteStore(ProjectStore):
    name = "supabase"

    def _require(self, tenant_id=None, needs_tenant=True):
        if not supabase_client.is_supabase_configured():
            raise StoreUnavailable("Supabase is not configured.")
        if needs_tenant and not tenant_id:
            raise StoreUnavailable("No authenticated tenant.")

    def read(self, tenant_id=None):
        self._require(tenant_id)
        rows = supabase_client.select(
            PROJECTS_TABLE,
            columns="blueprint,last_updated",
            filters={"user_id": tenant_id},
            limit=1,
        )
        if not rows or not rows[0].get("blueprint"):
            return None
        return {"data": rows[0]["blueprint"], "lastUpdated": rows[0].get("last_updated")}

    def write(self, envelope, tenant_id=None):
        self._require(tenant_id)
        project = envelope["data"]
        blueprint = project.get("blueprint") or {}
        supabase_client.upsert(
            PROJECTS_TABLE,
            {
                "user_id": tenant_id,
                "blueprint": project,
                "public_slug": derive_slug(blueprint.get("businessName")),
                "last_updated": envelope["lastUpdated"],
            },
            on_conflict="user_id",
        )
        return True

    def find_by_slug(self, slug):
        self._require(needs_tenant=False)
        rows = supabase_client.select(
            PROJECTS_TABLE,
            columns="blueprint,last_updated",
            filters={"public_slug": ("ilike", slug)},
            limit=1,
        )
        if not rows or not rows[0].get("blueprint"):
            return None
        return {"data": rows[0]["blueprint"], "lastUpdated": rows[0].get("last_updated")}


class LocalStore(ProjectStore):
    """Single-key JSON store under the Flask instance folder.

    Ignores tenant ids: like browser storage, it holds one project for
    whoever uses this installation.
    """

    name = "local"

    def __init__(self, directory=None, key=LOCAL_STORAGE_KEY):
        self._directory = directory
        self.key = key

    @property
    def directory(self):
        if self._directory:
            return self._directory
        configured = current_app.config.get("LOCAL_STORAGE_DIR")
        return configured or os.path.join(current_app.instance_path, "local_storage")

    @property
    def path(self):
        return os.path.join(self.directory, f"{self.key}.json")

    def read(self, tenant_id=None):
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return None
        if not raw.strip():
            return None
        envelope = json.loads(raw)
        if not isinstance(envelope, dict) or "data" not in envelope:
            raise ValueError(f"Malformed local project blob at {self.path}")
        return envelope

    def _stored_leads(self):
        try:
            envelope = self.read()
        except ValueError as e:
            logger.warning(f"Ignoring unreadable local blob while saving: {e}")
            return []
        data = (envelope or {}).get("data") or {}
        return list(data.get("leads") or [])

    def write(self, envelope, tenant_id=None):
        with _local_lock:
            data = envelope.get("data")
            if isinstance(data, dict):
                leads = merge_leads(self._stored_leads(), data.get("leads"))
                if leads or "leads" in data:
                    envelope = {**envelope, "data": {**data, "leads": leads}}
            # Serialize before touching the file so a bad payload leaves the
            # previous blob intact.
            payload = json.dumps(envelope)
            os.makedirs(self.directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        return True

    def modify(self, change):
        """Read, apply `change(envelope) -> envelope`, write, under one lock.

        `change` receives None when nothing is stored yet.
        """
        with _local_lock:
            return self.write(change(self.read()))

    def find_by_slug(self, slug):
        envelope = self.read()
        if envelope is None:
            return None
        project = normalize_project(envelope.get("data"))
        if project is None:
            return None
        name = project["blueprint"].get("businessName")
        if derive_slug(name) == (slug or "").lower():
            return envelope
        return None

    def clear(self):
        """Remove the stored blob. Returns True if one existed."""
        try:
            os.remove(self.path)
        except FileNotFoundError:
            return False
        return True


class FallbackStore(ProjectStore):
    """Try `primary`, degrade to `secondary`. Never raises."""

    name = "fallback"

    def __init__(self, primary, secondary):
        self.stores = (primary, secondary)

    def _attempt(self, action, call):
        for store in self.stores:
            try:
                result = call(store)
            except StoreUnavailable as e:
                logger.debug(f"{store.name} skipped for {action}: {e}")
                continue
            except Exception as e:
                logger.error(f"{store.name} {action} failed, falling back: {e}")
                continue
            if result:
                logger.info(f"Project {action} via {store.name}")
                return result
        return None

    def read(self, tenant_id=None):
        return self._attempt("load", lambda s: s.read(tenant_id))

    def write(self, envelope, tenant_id=None):
        return bool(self._attempt("save", lambda s: s.write(envelope, tenant_id)))

    def find_by_slug(self, slug):
        return self._attempt("public load", lambda s: s.find_by_slug(slug))


def get_project_store():
    """Remote-first store used by the persistence service."""
    return FallbackStore(RemoteStore(), LocalStore())
