"""Dashboard blueprint — /api/*

Owner-facing JSON API over the tenant's AppState. Every mutating route
updates the in-memory state first and then persists the whole project;
responses report the new state, plus `saved` where a save happened.

Route Map:
  GET   /api/project                  — full state snapshot
  POST  /api/onboarding               — finish onboarding with a blueprint
  PUT   /api/project/blueprint        — merge blueprint fields
  POST  /api/clients                  — add client
  PATCH /api/clients/<id>             — update client
  DELETE /api/clients/<id>            — delete client
  POST  /api/clients/<id>/check-in    — log check-in + email
  PUT   /api/automations              — replace automations
  PUT   /api/growth-plan              — replace growth plan
  GET   /api/leads                    — cached leads
  POST  /api/leads                    — owner-captured lead
  PATCH /api/leads/<id>/status        — set lead status
  POST  /api/leads/<id>/convert       — convert lead to client
  POST  /api/template/install         — install template config
  GET   /api/sync                     — run one poll cycle, drain toasts
"""

from flask import Blueprint, g, jsonify, request

from app.decorators import onboarding_required, state_required
from app.models.project import LEAD_STATUSES
from app.services import lead_service

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api")


def _json():
    return request.get_json(silent=True) or {}


def _snapshot(state):
    return {
        "has_onboarded": state.has_onboarded,
        "blueprint": state.blueprint,
        "clients": state.clients,
        "automations": state.automations,
        "leads": state.leads,
        "events": state.events,
        "growthPlan": state.growth_plan,
    }


# ──────────────────────────────────────────────
# Project
# ──────────────────────────────────────────────

@dashboard_bp.route("/project")
@state_required
def project():
    return jsonify(ok=True, project=_snapshot(g.state), toasts=g.state.drain_toasts())


@dashboard_bp.route("/onboarding", methods=["POST"])
@state_required
def onboarding():
    """Finish onboarding with an already generated blueprint."""
    blueprint = _json().get("blueprint")
    if not isinstance(blueprint, dict) or not blueprint.get("businessName"):
        return jsonify(ok=False, error="A blueprint with a businessName is required."), 422

    saved = g.state.handle_onboarding_complete(blueprint)
    return jsonify(ok=True, saved=saved, project=_snapshot(g.state)), 201


@dashboard_bp.route("/project/blueprint", methods=["PUT"])
@onboarding_required
def update_blueprint():
    updates = _json()
    if not updates:
        return jsonify(ok=False, error="No changes supplied."), 400
    saved = g.state.handle_update_blueprint(updates)
    return jsonify(ok=True, saved=saved, blueprint=g.state.blueprint)


# ──────────────────────────────────────────────
# Clients
# ──────────────────────────────────────────────

@dashboard_bp.route("/clients", methods=["POST"])
@onboarding_required
def add_client():
    client = g.state.handle_add_client(_json())
    return jsonify(ok=True, client=client), 201


@dashboard_bp.route("/clients/<client_id>", methods=["PATCH"])
@onboarding_required
def update_client(client_id):
    if not g.state.handle_update_client(client_id, _json()):
        return jsonify(ok=False, error="Client not found."), 404
    return jsonify(ok=True, clients=g.state.clients)


@dashboard_bp.route("/clients/<client_id>", methods=["DELETE"])
@onboarding_required
def delete_client(client_id):
    if not g.state.handle_delete_client(client_id):
        return jsonify(ok=False, error="Client not found."), 404
    return jsonify(ok=True, clients=g.state.clients)


@dashboard_bp.route("/clients/<client_id>/check-in", methods=["POST"])
@onboarding_required
def check_in(client_id):
    if not g.state.handle_check_in(client_id):
        return jsonify(ok=False, error="Client not found."), 404
    return jsonify(ok=True, clients=g.state.clients)


# ──────────────────────────────────────────────
# Automations / growth
# ──────────────────────────────────────────────

@dashboard_bp.route("/automations", methods=["PUT"])
@onboarding_required
def update_automations():
    automations = _json().get("automations")
    if not isinstance(automations, list):
        return jsonify(ok=False, error="automations must be a list."), 422
    saved = g.state.handle_update_automations(automations)
    return jsonify(ok=True, saved=saved, automations=g.state.automations)


@dashboard_bp.route("/growth-plan", methods=["PUT"])
@onboarding_required
def update_growth_plan():
    plan = _json().get("growthPlan")
    if not isinstance(plan, dict):
        return jsonify(ok=False, error="growthPlan must be an object."), 422
    saved = g.state.handle_update_growth_plan(plan)
    return jsonify(ok=True, saved=saved, growthPlan=g.state.growth_plan)


# ──────────────────────────────────────────────
# Leads
# ──────────────────────────────────────────────

@dashboard_bp.route("/leads")
@state_required
def leads():
    return jsonify(ok=True, leads=g.state.leads)


@dashboard_bp.route("/leads", methods=["POST"])
@state_required
def capture_lead():
    """Owner-initiated capture (e.g. from the website builder preview)."""
    data = _json()
    if not data.get("email"):
        return jsonify(ok=False, error="Email is required."), 422

    lead = lead_service.submit_lead(
        name=data.get("name") or "Website Lead",
        email=data["email"],
        phone=data.get("phone"),
        message=data.get("message"),
        source=data.get("source"),
        path=request.path,
        tenant_id=g.state.tenant_id,
    )
    if lead is None:
        return jsonify(ok=False, error="Failed to capture lead."), 500
    g.state.record_lead(lead)
    return jsonify(ok=True, lead=lead), 201


@dashboard_bp.route("/leads/<lead_id>/status", methods=["PATCH"])
@state_required
def update_lead_status(lead_id):
    status = _json().get("status")
    if status not in LEAD_STATUSES:
        return jsonify(
            ok=False, error=f"status must be one of: {', '.join(LEAD_STATUSES)}"
        ), 422
    g.state.handle_update_lead_status(lead_id, status)
    return jsonify(ok=True, leads=g.state.leads)


@dashboard_bp.route("/leads/<lead_id>/convert", methods=["POST"])
@onboarding_required
def convert_lead(lead_id):
    client = g.state.handle_convert_lead(lead_id)
    if client is None:
        return jsonify(ok=False, error="Lead not found."), 404
    return jsonify(ok=True, client=client, leads=g.state.leads), 201


# ──────────────────────────────────────────────
# Templates / sync
# ──────────────────────────────────────────────

@dashboard_bp.route("/template/install", methods=["POST"])
@state_required
def install_template():
    config = _json().get("config")
    if not isinstance(config, dict) or not config.get("blueprint"):
        return jsonify(ok=False, error="Template config with a blueprint is required."), 422
    saved = g.state.handle_install_template(config)
    return jsonify(ok=True, saved=saved, project=_snapshot(g.state))


@dashboard_bp.route("/sync")
@onboarding_required
def sync():
    """Run one poll cycle now. Used by clients that poll over HTTP."""
    result = g.state.sync()
    return jsonify(
        ok=True,
        new_lead=result.new_lead,
        leads_changed=result.leads_changed,
        events_changed=result.events_changed,
        lead_count=len(result.leads),
        event_count=len(result.events),
        toasts=g.state.drain_toasts(),
    )
