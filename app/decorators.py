"""
Custom route decorators for access control.

- state_required: ensures the user is logged in and binds the tenant's
  AppState to g.state (reopening it if the process restarted since login).
- onboarding_required: same, and the tenant must have a project.
"""

from functools import wraps

from flask import g, jsonify
from flask_login import current_user, login_required

from app.services.app_state import get_registry


def state_required(f):
    """Require login + load the tenant's AppState into g.state."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        g.state = get_registry().get_or_open(current_user.id, email=current_user.email)
        return f(*args, **kwargs)

    return decorated


def onboarding_required(f):
    """Require a tenant that has completed onboarding."""

    @wraps(f)
    @state_required
    def decorated(*args, **kwargs):
        if not g.state.has_onboarded:
            return jsonify(ok=False, error="Complete onboarding first."), 409
        return f(*args, **kwargs)

    return decorated
