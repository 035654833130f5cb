"""Polling sync — keeps a dashboard's leads and events "live" without push.

Every cycle re-fetches the project and the leads and compares list LENGTHS
with what the caller already holds:
  - more leads than before  -> replace the list, flag one "new lead"
  - fewer leads than before -> replace the list, no flag
  - event count differs     -> replace the event list

Length-only comparison misses same-count replacements (one lead deleted and
one added within an interval). Responses are applied in the order they
complete; a slow cycle can overwrite a newer one.
"""

import logging
import threading
from collections import namedtuple

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5.0

SyncResult = namedtuple(
    "SyncResult",
    ["leads", "events", "leads_changed", "events_changed", "new_lead"],
)


def diff_cycle(known_leads, known_events, fetched_leads, fetched_events):
    """Compare one poll's results with the cached lists.

    `fetched_events` is None when the project could not be loaded this
    cycle; the cached events are then kept.
    """
    leads_changed = len(fetched_leads) != len(known_leads)
    new_lead = len(fetched_leads) > len(known_leads)

    events_changed = (
        fetched_events is not None and len(fetched_events) != len(known_events)
    )

    return SyncResult(
        leads=list(fetched_leads) if leads_changed else list(known_leads),
        events=list(fetched_events) if events_changed else list(known_events),
        leads_changed=leads_changed,
        events_changed=events_changed,
        new_lead=new_lead,
    )


class PollingLoop:
    """Run `poll()` every `interval` seconds on a daemon thread.

    `should_run()` is checked before every cycle; once it returns False
    the loop exits on its own (the same as stop()). An in-flight poll is
    never interrupted.
    """

    def __init__(self, poll, should_run=None, interval=DEFAULT_INTERVAL, name="sync-poller"):
        self.poll = poll
        self.should_run = should_run or (lambda: True)
        self.interval = interval
        self.name = name
        self.cycles = 0
        self._stop = threading.Event()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start polling if the gate is open. Returns True if started."""
        if self.running:
            return True
        if not self.should_run():
            logger.debug(f"{self.name}: gate closed, not starting")
            return False
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        return True

    def stop(self, timeout=None):
        """Clear the interval. Waits up to `timeout` for the thread to end."""
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def _run(self):
        while not self._stop.wait(self.interval):
            if not self.should_run():
                logger.debug(f"{self.name}: gate closed, stopping")
                break
            try:
                self.poll()
            except Exception as e:
                logger.error(f"{self.name}: poll failed: {e}")
            self.cycles += 1
        self._stop.set()
