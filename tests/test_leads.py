"""Tests for the lead capture path.

Covers:
- Public path parsing
- Slug -> tenant resolution (hit, miss, remote error, unconfigured)
- submit_lead on Supabase, on the local blob, and with remote failures
- Orphaned leads are kept, never dropped
- lead_created event appended without being transactional with the insert
- fetch_leads ordering on both storage eras
- update_lead_status with no transition enforcement
"""

from unittest.mock import patch

from app.models.project import new_project
from app.services import lead_service, storage_service
from app.services.project_store import LocalStore


def _seed_remote_project(fake_supabase, blueprint, tenant_id="t1"):
    storage_service.save_project(new_project(blueprint), tenant_id=tenant_id)


class TestSlugFromPath:

    def test_public_path(self):
        assert lead_service.slug_from_path("/p/peak-coaching") == "peak-coaching"

    def test_nested_public_path(self):
        assert lead_service.slug_from_path("/p/peak-coaching/leads") == "peak-coaching"

    def test_non_public_paths(self):
        assert lead_service.slug_from_path("/api/leads") is None
        assert lead_service.slug_from_path("/p/") is None
        assert lead_service.slug_from_path("") is None
        assert lead_service.slug_from_path(None) is None


class TestResolveProjectId:

    def test_resolves_case_insensitively(self, fake_supabase, blueprint):
        _seed_remote_project(fake_supabase, blueprint)
        assert lead_service.resolve_project_id_for_slug("PEAK-performance-coaching") == "t1"

    def test_unknown_slug(self, fake_supabase, blueprint):
        _seed_remote_project(fake_supabase, blueprint)
        assert lead_service.resolve_project_id_for_slug("someone-else") is None

    def test_remote_error_is_none(self, fake_supabase):
        fake_supabase.fail.add("select")
        assert lead_service.resolve_project_id_for_slug("peak") is None

    def test_unconfigured_is_none(self):
        assert lead_service.resolve_project_id_for_slug("peak") is None


class TestSubmitLeadRemote:

    def test_public_lead_attached_to_tenant(self, fake_supabase, blueprint):
        _seed_remote_project(fake_supabase, blueprint)

        lead = lead_service.submit_lead(
            "Ana", "ana@x.test", phone="555-0100", message="Hi!",
            source="Website", path="/p/peak-performance-coaching/leads",
        )

        rows = fake_supabase.tables["inbound_leads"]
        assert len(rows) == 1
        assert rows[0]["project_id"] == "t1"
        assert rows[0]["status"] == "New"
        assert rows[0]["source"] == "Website"
        assert rows[0]["id"] == lead["id"]

    def test_lead_created_event_appended(self, fake_supabase, blueprint):
        _seed_remote_project(fake_supabase, blueprint)
        lead_service.submit_lead("Ana", "ana@x.test", source="Referral",
                                 path="/p/peak-performance-coaching")

        events = storage_service.load_project("t1")["data"]["events"]
        assert [e["type"] for e in events] == ["lead_created"]
        assert events[0]["metadata"] == {"source": "Referral"}

    def test_unresolvable_slug_keeps_every_lead(self, fake_supabase, blueprint):
        _seed_remote_project(fake_supabase, blueprint)

        for i in range(5):
            assert lead_service.submit_lead(
                f"Visitor {i}", f"v{i}@x.test", path="/p/does-not-exist"
            ) is not None

        rows = fake_supabase.tables["inbound_leads"]
        assert len(rows) == 5
        assert all(row["project_id"] is None for row in rows)
        # no tenant to attach the event to
        assert storage_service.load_project("t1")["data"]["events"] == []

    def test_owner_capture_uses_tenant(self, fake_supabase, blueprint):
        _seed_remote_project(fake_supabase, blueprint)
        lead_service.submit_lead("Walk-in", "w@x.test", path="/api/leads", tenant_id="t1")
        assert fake_supabase.tables["inbound_leads"][0]["project_id"] == "t1"

    def test_html_stripped(self, fake_supabase):
        lead = lead_service.submit_lead(
            "<b>Ana</b>", "ana@x.test", message="<script>x()</script>hello"
        )
        assert lead["name"] == "Ana"
        assert "<script>" not in lead["message"]
        assert lead["message"].endswith("hello")

    def test_text_kept_as_plain_text(self, fake_supabase):
        lead = lead_service.submit_lead(
            "Tom & Jerry", "tj@x.test", message="5 < 10 & <b>more</b>"
        )
        assert lead["name"] == "Tom & Jerry"
        assert lead["message"] == "5 < 10 & more"
        assert fake_supabase.tables["inbound_leads"][0]["name"] == "Tom & Jerry"

    def test_insert_failure_falls_back_to_local_blob(self, fake_supabase, blueprint):
        fake_supabase.fail.add("insert")

        lead = lead_service.submit_lead("Ana", "ana@x.test", path="/p/whatever")

        assert lead is not None
        blob = LocalStore().read()
        assert [l["id"] for l in blob["data"]["leads"]] == [lead["id"]]

    def test_event_failure_does_not_undo_insert(self, fake_supabase, blueprint):
        _seed_remote_project(fake_supabase, blueprint)
        with patch.object(storage_service, "track_event", side_effect=RuntimeError("boom")):
            lead = lead_service.submit_lead("Ana", "ana@x.test",
                                            path="/p/peak-performance-coaching")
        assert lead is not None
        assert len(fake_supabase.tables["inbound_leads"]) == 1

    def test_nothing_stored_returns_none(self, fake_supabase):
        fake_supabase.fail.add("insert")
        with patch.object(LocalStore, "write", side_effect=OSError("quota")):
            assert lead_service.submit_lead("Ana", "ana@x.test") is None


class TestSubmitLeadLocal:

    def test_appends_to_local_project(self, blueprint):
        storage_service.save_project(new_project(blueprint), "t1")

        lead = lead_service.submit_lead("Ana", "ana@x.test", path="/p/peak-performance-coaching")

        data = LocalStore().read()["data"]
        assert data["leads"][0]["id"] == lead["id"]
        assert data["leads"][0]["projectId"] is None
        assert [e["type"] for e in data["events"]] == ["lead_created"]

    def test_no_local_project_still_keeps_leads(self):
        for i in range(3):
            lead_service.submit_lead(f"V{i}", f"v{i}@x.test", path="/p/unknown")

        assert len(lead_service.fetch_leads()) == 3
        # leads alone don't make a project
        assert storage_service.load_project(None) is None


class TestFetchLeads:

    def test_remote_newest_first_and_filtered(self, fake_supabase):
        fake_supabase.tables["inbound_leads"] = [
            {"id": "a", "project_id": "t1", "name": "A", "email": "a@x",
             "created_at": "2026-10-01T10:00:00+00:00"},
            {"id": "b", "project_id": "t1", "name": "B", "email": "b@x",
             "created_at": "2026-10-03T10:00:00+00:00", "status": "Contacted"},
            {"id": "c", "project_id": "t2", "name": "C", "email": "c@x",
             "created_at": "2026-10-02T10:00:00+00:00"},
        ]

        leads = lead_service.fetch_leads("t1")

        assert [l["id"] for l in leads] == ["b", "a"]
        assert leads[0]["status"] == "Contacted"
        assert leads[1]["status"] == "New"
        assert leads[1]["source"] == "Website"
        assert leads[1]["projectId"] == "t1"

    def test_remote_error_is_empty(self, fake_supabase):
        fake_supabase.fail.add("select")
        assert lead_service.fetch_leads("t1") == []

    def test_local_newest_first(self, blueprint):
        project = new_project(blueprint)
        project["leads"] = [
            {"id": "old", "name": "O", "email": "o@x", "createdAt": "2026-01-01T00:00:00+00:00"},
            {"id": "new", "name": "N", "email": "n@x", "createdAt": "2026-06-01T00:00:00+00:00",
             "status": "Archived", "source": "Referral"},
        ]
        storage_service.save_project(project, None)

        leads = lead_service.fetch_leads()
        assert [l["id"] for l in leads] == ["new", "old"]
        assert leads[1]["status"] == "New"
        assert leads[0]["source"] == "Referral"


class TestUpdateLeadStatus:

    def test_remote_sequence_ends_converted(self, fake_supabase):
        lead = lead_service.submit_lead("Ana", "ana@x.test", tenant_id="t1")

        assert lead_service.update_lead_status(lead["id"], "Contacted") is True
        assert lead_service.update_lead_status(lead["id"], "Converted") is True
        assert fake_supabase.tables["inbound_leads"][0]["status"] == "Converted"

    def test_any_transition_allowed(self, fake_supabase):
        lead = lead_service.submit_lead("Ana", "ana@x.test", tenant_id="t1")
        lead_service.update_lead_status(lead["id"], "Archived")
        lead_service.update_lead_status(lead["id"], "New")
        assert fake_supabase.tables["inbound_leads"][0]["status"] == "New"

    def test_remote_failure_returns_false(self, fake_supabase):
        fake_supabase.fail.add("update")
        assert lead_service.update_lead_status("l1", "Contacted") is False

    def test_local_update(self, blueprint):
        storage_service.save_project(new_project(blueprint), None)
        lead = lead_service.submit_lead("Ana", "ana@x.test")

        assert lead_service.update_lead_status(lead["id"], "Contacted") is True
        assert lead_service.update_lead_status(lead["id"], "Converted") is True
        assert lead_service.fetch_leads()[0]["status"] == "Converted"

    def test_local_unknown_lead(self, blueprint):
        storage_service.save_project(new_project(blueprint), None)
        assert lead_service.update_lead_status("missing", "Contacted") is False
