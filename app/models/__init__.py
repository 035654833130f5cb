# Models package — import SQL models here so Alembic can discover them.
# Project data lives in Supabase / the local store, see app.models.project.

from app.models.user import User  # noqa: F401
