"""Tests for the polling sync loop.

Covers:
- Length-only diffing of leads and events
- One "new lead" notification per cycle, however many leads arrived
- Missed same-count replacement (documented limitation)
- PollingLoop gating, stop, and resilience to poll errors
- AppState.sync against real storage
"""

import threading
import time

from app.models.project import new_project
from app.services import lead_service, storage_service
from app.services.app_state import AppState
from app.services.sync_service import PollingLoop, diff_cycle


def _leads(*ids):
    return [{"id": i} for i in ids]


class TestDiffCycle:

    def test_more_leads_flags_new_lead(self):
        result = diff_cycle(_leads("a"), [], _leads("a", "b", "c"), [])
        assert result.new_lead is True
        assert result.leads_changed is True
        assert [l["id"] for l in result.leads] == ["a", "b", "c"]

    def test_fewer_leads_replaces_without_flag(self):
        result = diff_cycle(_leads("a", "b"), [], _leads("a"), [])
        assert result.new_lead is False
        assert result.leads_changed is True
        assert result.leads == _leads("a")

    def test_same_count_replacement_is_missed(self):
        result = diff_cycle(_leads("a", "b"), [], _leads("a", "c"), [])
        assert result.leads_changed is False
        assert result.new_lead is False
        assert result.leads == _leads("a", "b")

    def test_first_lead_from_empty_flags(self):
        assert diff_cycle([], [], _leads("a"), []).new_lead is True

    def test_event_count_change_either_direction(self):
        grew = diff_cycle([], [{"id": 1}], [], [{"id": 1}, {"id": 2}])
        shrank = diff_cycle([], [{"id": 1}, {"id": 2}], [], [{"id": 3}])
        assert grew.events_changed and len(grew.events) == 2
        assert shrank.events_changed and shrank.events == [{"id": 3}]

    def test_missing_project_keeps_cached_events(self):
        result = diff_cycle([], [{"id": 1}], [], None)
        assert result.events_changed is False
        assert result.events == [{"id": 1}]


class TestPollingLoop:

    def test_polls_until_stopped(self):
        ticks = threading.Event()
        count = []

        def poll():
            count.append(1)
            if len(count) >= 3:
                ticks.set()

        loop = PollingLoop(poll, interval=0.01)
        assert loop.start() is True
        assert ticks.wait(2)
        loop.stop(timeout=1)
        assert loop.running is False
        settled = len(count)
        time.sleep(0.05)
        assert len(count) == settled

    def test_closed_gate_never_starts(self):
        calls = []
        loop = PollingLoop(lambda: calls.append(1), should_run=lambda: False, interval=0.01)
        assert loop.start() is False
        assert loop.running is False
        assert calls == []

    def test_gate_flipping_false_stops_loop(self):
        gate = {"open": True}
        calls = []

        def poll():
            calls.append(1)
            gate["open"] = False

        loop = PollingLoop(poll, should_run=lambda: gate["open"], interval=0.01)
        loop.start()
        loop._thread.join(2)
        assert loop.running is False
        assert calls == [1]

    def test_poll_errors_do_not_kill_loop(self):
        done = threading.Event()
        calls = []

        def poll():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("network down")
            done.set()

        loop = PollingLoop(poll, interval=0.01)
        loop.start()
        assert done.wait(2)
        loop.stop(timeout=1)
        assert len(calls) >= 2


class TestAppStateSync:

    def _onboarded_state(self, fake_supabase, blueprint, tenant_id="t1"):
        storage_service.save_project(new_project(blueprint), tenant_id=tenant_id)
        return AppState(tenant_id).initialize()

    def test_one_notification_for_several_new_leads(self, fake_supabase, blueprint):
        state = self._onboarded_state(fake_supabase, blueprint)
        state.drain_toasts()
        for i in range(3):
            lead_service.submit_lead(f"V{i}", f"v{i}@x.test", path="/p/peak-performance-coaching")

        result = state.sync()

        assert result.new_lead is True
        assert len(state.leads) == 3
        assert [t["message"] for t in state.drain_toasts()] == ["New Lead Captured!"]

    def test_events_refreshed_from_project(self, fake_supabase, blueprint):
        state = self._onboarded_state(fake_supabase, blueprint)
        lead_service.submit_lead("Ana", "ana@x.test", path="/p/peak-performance-coaching")

        state.sync()
        assert [e["type"] for e in state.events] == ["lead_created"]

    def test_quiet_cycle(self, fake_supabase, blueprint):
        state = self._onboarded_state(fake_supabase, blueprint)
        state.drain_toasts()
        result = state.sync()
        assert result.new_lead is False
        assert state.drain_toasts() == []

    def test_gate_requires_onboarding_and_session(self, fake_supabase, blueprint):
        fresh = AppState("t9").initialize()
        assert fresh.should_poll() is False

        state = self._onboarded_state(fake_supabase, blueprint)
        assert state.should_poll() is True
        state.teardown()
        assert state.should_poll() is False
