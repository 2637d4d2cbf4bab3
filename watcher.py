#watcher.py
"""Decides when the rules get rebuilt. Every trigger (first install, startup, a settings change, an explicit sync request from the editor) lands in a single pending slot; one pass runs at a time and always works from the newest trigger, so stale requests are never replayed.
"""

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum

import blocker
import rules
import store
from errors import SyncError

logging.basicConfig(level=logging.INFO, format='%(asctime)s - [watcher.py] - %(message)s')


class TriggerKind(Enum):
    INSTALLED = "installed"
    STARTUP = "startup"
    STORE_CHANGE = "store_change"
    REQUEST = "request"


@dataclass(frozen=True)
class Trigger:
    kind: TriggerKind
    domains: tuple = None
    redirect_url: str = None
    enabled: bool = True

    @property
    def interactive(self):
        return self.kind is TriggerKind.REQUEST


@dataclass
class SyncResult:
    ok: bool
    trigger: Trigger
    rule_count: int = 0
    batches: int = 0
    removed: int = 0
    error: Exception = None


class ConfigWatcher:
    def __init__(self, config_store, rule_store):
        self.config_store = config_store
        self.rule_store = rule_store
        self.syncing = False
        self._cond = threading.Condition()
        self._pass_lock = threading.Lock()
        self._pending = None
        self._waiters = []
        self._thread = None
        self._stopped = False

    # --- triggers ---

    def on_installed(self):
        written = self.config_store.set_defaults()
        if written:
            logging.info(f"First run, wrote defaults for {', '.join(sorted(written))}")
        return self.submit(Trigger(TriggerKind.INSTALLED))

    def on_startup(self):
        return self.submit(Trigger(TriggerKind.STARTUP))

    def on_store_change(self, changed_keys, new_values):
        if not set(changed_keys) & store.SYNC_KEYS:
            return None
        return self.submit(Trigger(TriggerKind.STORE_CHANGE))

    def request_sync(self, domains, redirect_url, enabled=True):
        return self.submit(Trigger(TriggerKind.REQUEST, tuple(domains), redirect_url, enabled))

    def submit(self, trigger):
        future = Future()
        with self._cond:
            if self._pending is not None:
                logging.debug(f"Coalescing {self._pending.kind.value} trigger into {trigger.kind.value}")
            self._pending = trigger
            self._waiters.append(future)
            self._cond.notify()
        return future

    # --- dispatch ---

    def start(self):
        self.config_store.subscribe(self.on_store_change)
        self._stopped = False
        self._thread = threading.Thread(target=self._loop, name="config-watcher", daemon=True)
        self._thread.start()

    def stop(self, timeout=5):
        self.config_store.unsubscribe(self.on_store_change)
        with self._cond:
            self._stopped = True
            self._cond.notify()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None

        # whatever never got its pass still has callers waiting on it
        with self._cond:
            trigger, waiters = self._pending, self._waiters
            self._pending, self._waiters = None, []
        if trigger is not None:
            logging.info(f"Stopped with a {trigger.kind.value} sync still pending, it will not run.")
            result = SyncResult(ok=False, trigger=trigger, error=SyncError("Watcher stopped before the sync ran"))
            for future in waiters:
                if not future.cancelled():
                    future.set_result(result)

    def _loop(self):
        while True:
            with self._cond:
                while self._pending is None and not self._stopped:
                    self._cond.wait()
                if self._stopped:
                    return
            self.process_pending()

    def process_pending(self):
        """Runs one pass for the newest pending trigger, if any. Returns its SyncResult."""
        with self._pass_lock:
            with self._cond:
                trigger, waiters = self._pending, self._waiters
                self._pending, self._waiters = None, []
            if trigger is None:
                return None

            self.syncing = True
            try:
                result = self.run_pass(trigger)
            except Exception as e:
                logging.exception(f"Unexpected error during sync after {trigger.kind.value}")
                result = SyncResult(ok=False, trigger=trigger, error=e)
            finally:
                self.syncing = False

        for future in waiters:
            if not future.cancelled():
                future.set_result(result)
        return result

    def run_pass(self, trigger):
        try:
            if trigger.interactive:
                domains, redirect_url, enabled = list(trigger.domains), trigger.redirect_url, trigger.enabled
            else:
                values = self.config_store.get(sorted(store.SYNC_KEYS))
                domains, redirect_url, enabled = store.read_sync_settings(values)

            rule_set = rules.compute_rules(domains, redirect_url, enabled)
            report = blocker.apply_rules(self.rule_store, rule_set)
        except SyncError as e:
            self._log_failure(trigger, e)
            return SyncResult(ok=False, trigger=trigger, error=e)

        if not enabled:
            logging.info("Redirector disabled, all rules cleared.")
        else:
            logging.info(f"Synced {len(domains)} websites -> {redirect_url} ({trigger.kind.value})")
        return SyncResult(
            ok=True,
            trigger=trigger,
            rule_count=report.installed,
            batches=report.batches,
            removed=report.removed,
        )

    def _log_failure(self, trigger, error):
        detail = type(error).__name__
        batch_index = getattr(error, 'batch_index', None)
        if batch_index is not None:
            detail += f" in batch {batch_index}"
        logging.error(f"Sync after {trigger.kind.value} failed ({detail}): {error}")
