"""Public funnel blueprint — /p/<slug>*

Anonymous endpoints backing a tenant's public funnel page. No login; the
tenant is chosen by the slug in the URL. Responses never contain client,
lead, or event data.

Route Map:
  GET     /p/<slug>        — public project (blueprint only), records a page view
  POST    /p/<slug>/leads  — capture a lead for the tenant behind <slug>
  OPTIONS /p/<slug>/leads  — CORS preflight
"""

import logging
import re

from flask import Blueprint, jsonify, make_response, request

from app.extensions import limiter
from app.services import lead_service, storage_service

public_bp = Blueprint("public", __name__, url_prefix="/p")

logger = logging.getLogger(__name__)

# Simple email regex — not exhaustive, just sanity-check
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _cors_response(response):
    """Add CORS headers so cross-origin JS submissions work."""
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return response


@public_bp.route("/<slug>")
def site(slug):
    """Public view of a tenant's project."""
    saved = storage_service.load_public_by_slug(slug)
    if saved is None:
        return _cors_response(jsonify(ok=False, error="Site not found.")), 404

    lead_service.track_page_view(slug)
    return _cors_response(
        jsonify(ok=True, project=saved["data"], lastUpdated=saved["lastUpdated"])
    ), 200


@public_bp.route("/<slug>/leads", methods=["OPTIONS"])
def submit_lead_preflight(slug):
    """Handle CORS preflight requests."""
    response = make_response("", 204)
    return _cors_response(response)


@public_bp.route("/<slug>/leads", methods=["POST"])
@limiter.limit("10 per hour")
def submit_lead(slug):
    """
    Accept a lead from the public funnel form.

    Accepts JSON or a standard HTML form POST.

    Required fields: name, email
    Optional fields: phone, message, source

    An unknown slug does not reject the lead: it is stored without a
    tenant. Returns { ok: true } or { ok: false, error: "..." }.
    """
    if request.is_json:
        data = request.get_json(silent=True) or {}
    else:
        data = request.form.to_dict()

    if not data:
        return _cors_response(jsonify(ok=False, error="Invalid request.")), 400

    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip()

    errors = []
    if not name:
        errors.append("Name is required.")
    if not email or not EMAIL_RE.match(email):
        errors.append("A valid email is required.")
    if errors:
        return _cors_response(jsonify(ok=False, error=" ".join(errors))), 422

    lead = lead_service.submit_lead(
        name=name,
        email=email,
        phone=(data.get("phone") or "").strip() or None,
        message=(data.get("message") or "").strip() or None,
        source=(data.get("source") or "").strip() or None,
        path=request.path,
    )
    if lead is None:
        return _cors_response(
            jsonify(ok=False, error="Failed to join — please try again.")
        ), 500

    logger.info(f"Public lead from {name} <{email}> (slug: {slug})")
    return _cors_response(jsonify(ok=True)), 201
