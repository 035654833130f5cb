"""Application state — one in-memory container per signed-in tenant.

AppState holds the tenant's working copies (blueprint, clients, automations,
leads, events, growth plan) and routes every edit to the persistence layer.
Edits are optimistic: the in-memory copy changes first, then the whole
project is saved. A failed save only produces an error toast.

Lifecycle (managed by StateRegistry):
  - login      -> StateRegistry.open(): build + initialize() + start polling
  - sign-out   -> StateRegistry.close(): teardown()

Toasts are queued here and drained by the dashboard API.
"""

import logging
import threading
from functools import wraps

from flask import current_app

from app.models.project import (
    build_client,
    build_event,
    default_automations,
    new_id,
)
from app.services import lead_service, storage_service
from app.services.email_service import send_email
from app.services.sync_service import PollingLoop, diff_cycle

logger = logging.getLogger(__name__)

# Automations whose trigger mentions any of these fire when a client is added.
CLIENT_TRIGGER_KEYWORDS = ("sign up", "new lead", "client")


def synchronized(method):
    """Run an AppState method under the state's lock.

    The polling thread and request handlers share the same lists.
    """

    @wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class AppState:

    def __init__(self, tenant_id, email=None):
        self.tenant_id = tenant_id
        self.email = email
        self.active = True
        self.has_onboarded = False
        self.blueprint = None
        self.clients = []
        self.automations = []
        self.leads = []
        self.events = []
        self.growth_plan = None
        self.toasts = []
        self.poller = None
        self._poll_app = None
        self._poll_interval = None
        self._lock = threading.RLock()

    def __repr__(self):
        return f"<AppState tenant={self.tenant_id} onboarded={self.has_onboarded}>"

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    @synchronized
    def initialize(self):
        """Load the saved project and the tenant's leads."""
        saved = storage_service.load_project(self.tenant_id)
        self.leads = lead_service.fetch_leads(self.tenant_id)

        if saved is None:
            self.automations = default_automations()
            return self

        project = saved["data"]
        self.blueprint = project["blueprint"]
        self.clients = project["clients"]
        self.automations = project["automations"]
        self.events = project["events"]
        self.growth_plan = project.get("growthPlan")
        self.has_onboarded = True
        self.add_toast("Project loaded successfully", "success")
        return self

    def teardown(self):
        """Stop polling and drop everything held for this tenant."""
        self.active = False
        # Outside the lock: an in-flight sync() holds it until it returns.
        self.stop_polling()
        with self._lock:
            self.has_onboarded = False
            self.blueprint = None
            self.clients = []
            self.automations = []
            self.leads = []
            self.events = []
            self.growth_plan = None
            self.toasts = []

    # ──────────────────────────────────────────────
    # Toasts
    # ──────────────────────────────────────────────

    def add_toast(self, message, toast_type="info"):
        toast = {"id": new_id(), "message": message, "type": toast_type}
        self.toasts.append(toast)
        return toast

    def drain_toasts(self):
        toasts, self.toasts = self.toasts, []
        return toasts

    # ──────────────────────────────────────────────
    # Persistence
    # ──────────────────────────────────────────────

    def project(self):
        """Current state as a Project dict.

        Leads are left out: lead_service owns them in both storage eras.
        """
        project = {
            "blueprint": self.blueprint,
            "clients": self.clients,
            "automations": self.automations,
            "events": self.events,
            "growthPlan": self.growth_plan,
        }
        return project

    def _persist(self):
        if self.blueprint is None:
            return False
        saved = storage_service.save_project(self.project(), tenant_id=self.tenant_id)
        if not saved:
            self.add_toast("Failed to save", "error")
        return saved

    # ──────────────────────────────────────────────
    # Handlers
    # ──────────────────────────────────────────────

    @synchronized
    def handle_onboarding_complete(self, blueprint):
        self.blueprint = blueprint
        self.clients = []
        self.automations = default_automations()
        self.events = []
        self.growth_plan = None
        self.has_onboarded = True
        saved = self._persist()
        if saved:
            self.add_toast("Business initialized successfully!", "success")
        self._start_polling()
        return saved

    def _send_welcome(self, client):
        business_name = (self.blueprint or {}).get("businessName") or "BusinessOS"
        website = (self.blueprint or {}).get("websiteData") or {}
        send_email(
            to=client["email"],
            subject=f"Welcome to {business_name}",
            template="emails/client_welcome.html",
            context={
                "client_name": client["name"],
                "business_name": business_name,
                "program": client["program"],
                "site_url": website.get("publishedUrl"),
            },
            from_name=business_name,
        )
        self.add_toast(f"Email Sent: Welcome to {business_name}", "info")

    def _trigger_client_automations(self, client):
        """Bump counters on matching automations and log one event each."""
        triggered = [
            a for a in self.automations
            if a.get("status") == "Active"
            and any(k in (a.get("trigger") or "").lower() for k in CLIENT_TRIGGER_KEYWORDS)
        ]
        if not triggered:
            return []

        triggered_ids = {a["id"] for a in triggered}
        updated = []
        for automation in self.automations:
            if automation["id"] in triggered_ids:
                stats = dict(automation.get("stats") or {})
                stats["sent"] = stats.get("sent", 0) + 1
                automation = {**automation, "stats": stats}
            updated.append(automation)
        self.automations = updated

        new_events = [
            build_event(
                "automation_triggered",
                {"workflow": a["name"], "client": client["name"]},
            )
            for a in triggered
        ]
        self.events = self.events + new_events

        for a in triggered:
            if a.get("type") == "Email":
                self.add_toast(f"Triggered Email: {a['name']}", "success")
            else:
                self.add_toast(f"Automation: {a['name']} (Ready to Send)", "info")
        return triggered

    @synchronized
    def handle_add_client(self, data):
        client = build_client(data)
        self.clients = self.clients + [client]
        self.add_toast("Client added successfully", "success")

        if client["email"] and self.blueprint:
            self._send_welcome(client)

        self._trigger_client_automations(client)
        self._persist()
        return client

    @synchronized
    def handle_update_client(self, client_id, updates):
        found = False
        updated = []
        for client in self.clients:
            if client["id"] == client_id:
                client = {**client, **updates, "id": client_id}
                found = True
            updated.append(client)
        if not found:
            return False
        self.clients = updated
        self._persist()
        self.add_toast("Client updated", "success")
        return True

    @synchronized
    def handle_delete_client(self, client_id):
        """Remove exactly one client by id; the rest keep their order."""
        for index, client in enumerate(self.clients):
            if client["id"] == client_id:
                self.clients = self.clients[:index] + self.clients[index + 1:]
                self._persist()
                self.add_toast("Client removed", "info")
                return True
        return False

    @synchronized
    def handle_check_in(self, client_id):
        client = next((c for c in self.clients if c["id"] == client_id), None)
        if client is None or self.blueprint is None:
            return False
        self.clients = [
            {**c, "lastCheckIn": "Just now"} if c["id"] == client_id else c
            for c in self.clients
        ]
        self._persist()
        if client.get("email"):
            business_name = self.blueprint.get("businessName") or "BusinessOS"
            send_email(
                to=client["email"],
                subject=f"Weekly check-in from {business_name}",
                template="emails/client_check_in.html",
                context={"client_name": client["name"], "business_name": business_name},
                from_name=business_name,
            )
        self.add_toast(f"Check-in logged for {client['name']}", "success")
        return True

    @synchronized
    def handle_update_automations(self, automations):
        self.automations = list(automations)
        return self._persist()

    @synchronized
    def handle_update_blueprint(self, updates):
        if self.blueprint is None:
            return False
        self.blueprint = {**self.blueprint, **updates}
        saved = self._persist()
        if saved:
            self.add_toast("Changes saved successfully", "success")
        return saved

    @synchronized
    def handle_update_growth_plan(self, plan):
        """Replace the growth plan on the stored project only."""
        self.growth_plan = plan
        saved = storage_service.save_growth_plan(plan, tenant_id=self.tenant_id)
        if not saved:
            self.add_toast("Failed to save", "error")
        return saved

    @synchronized
    def handle_update_lead_status(self, lead_id, status):
        """Update the cached lead now; the remote write is not awaited for UI."""
        self.leads = [
            {**l, "status": status} if l.get("id") == lead_id else l
            for l in self.leads
        ]
        lead_service.update_lead_status(lead_id, status)

    @synchronized
    def record_lead(self, lead):
        """Show a lead captured through the owner API without waiting for a poll."""
        if not any(l.get("id") == lead["id"] for l in self.leads):
            self.leads = [lead] + self.leads
        self.add_toast("New lead captured from website!", "success")

    @synchronized
    def handle_convert_lead(self, lead_id):
        lead = next((l for l in self.leads if l.get("id") == lead_id), None)
        if lead is None:
            return None
        client = self.handle_add_client({
            "name": lead.get("name"),
            "email": lead.get("email"),
            "phone": lead.get("phone"),
            "status": "Lead",
            "program": "Converted",
            "tags": ["From Lead"],
        })
        self.events = self.events + [
            build_event("client_converted", {"lead": lead_id, "client": client["id"]})
        ]
        self.handle_update_lead_status(lead_id, "Converted")
        self._persist()
        self.add_toast("Lead converted to client!", "success")
        return client

    @synchronized
    def handle_install_template(self, config):
        """Adopt a template's blueprint and automations, keep own CRM data."""
        if not config or not config.get("blueprint"):
            return False
        self.blueprint = config["blueprint"]
        self.automations = list(config.get("automations") or [])
        self.has_onboarded = True
        saved = self._persist()
        self.add_toast("System installed successfully!", "success")
        return saved

    # ──────────────────────────────────────────────
    # Polling
    # ──────────────────────────────────────────────

    def should_poll(self):
        return self.active and self.has_onboarded

    @synchronized
    def sync(self):
        """One poll cycle: refresh leads and events by length comparison."""
        saved = storage_service.load_project(self.tenant_id)
        fetched_events = saved["data"]["events"] if saved else None
        fetched_leads = lead_service.fetch_leads(self.tenant_id)

        result = diff_cycle(self.leads, self.events, fetched_leads, fetched_events)
        self.leads = result.leads
        self.events = result.events
        if result.new_lead:
            self.add_toast("New Lead Captured!", "success")
        return result

    def enable_polling(self, app, interval):
        self._poll_app = app
        self._poll_interval = interval
        self._start_polling()

    def _start_polling(self):
        if self._poll_app is None:
            return False
        if self.poller is None:
            app = self._poll_app

            def poll():
                with app.app_context():
                    self.sync()

            self.poller = PollingLoop(
                poll,
                should_run=self.should_poll,
                interval=self._poll_interval,
                name=f"sync-{self.tenant_id}",
            )
        return self.poller.start()

    def stop_polling(self):
        if self.poller is not None:
            self.poller.stop(timeout=1)
            self.poller = None


class StateRegistry:
    """AppState per tenant for the lifetime of the process."""

    def __init__(self):
        self._states = {}
        self._lock = threading.RLock()

    def get(self, tenant_id):
        return self._states.get(tenant_id)

    def open(self, tenant_id, email=None):
        """Create and initialize the tenant's state, replacing any old one."""
        with self._lock:
            self.close(tenant_id)
            state = AppState(tenant_id, email=email).initialize()
            app = current_app._get_current_object()
            if app.config.get("SYNC_POLL_ENABLED"):
                state.enable_polling(app, app.config.get("SYNC_POLL_INTERVAL", 5))
            self._states[tenant_id] = state
        logger.info(f"App state opened for tenant {tenant_id}")
        return state

    def close(self, tenant_id):
        with self._lock:
            state = self._states.pop(tenant_id, None)
        if state is not None:
            state.teardown()
            logger.info(f"App state closed for tenant {tenant_id}")
        return state

    def get_or_open(self, tenant_id, email=None):
        with self._lock:
            state = self._states.get(tenant_id)
            if state is None:
                state = self.open(tenant_id, email=email)
            return state


def get_registry():
    return current_app.extensions.setdefault("app_states", StateRegistry())
