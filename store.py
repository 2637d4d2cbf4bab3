#store.py
"""Key-value settings kept in config.yaml. Anyone interested in changes subscribes a listener; `set` and `poll` tell listeners which keys actually changed."""

import copy
import logging
import os
import tempfile
import threading

import yaml

from errors import InvalidInput, StoreReadFailure, StoreWriteFailure

CONFIG_PATH = 'config.yaml'

BLOCKED_WEBSITES = 'blocked_websites'
REDIRECT_URL = 'redirect_url'
EXTENSION_ENABLED = 'extension_enabled'
SYNC_KEYS = frozenset({BLOCKED_WEBSITES, REDIRECT_URL, EXTENSION_ENABLED})

DEFAULT_REDIRECT_URL = 'https://www.google.com'
DEFAULTS = {
    REDIRECT_URL: DEFAULT_REDIRECT_URL,
    BLOCKED_WEBSITES: [],
    EXTENSION_ENABLED: True,
}

logging.basicConfig(level=logging.INFO, format='%(asctime)s - [store.py] - %(message)s')


def read_sync_settings(values):
    """Fills in defaults for the three keys the rules depend on."""
    blocked = values.get(BLOCKED_WEBSITES) or []
    if not isinstance(blocked, list) or not all(isinstance(site, str) and site.strip() for site in blocked):
        raise InvalidInput(f"{BLOCKED_WEBSITES} must be a list of website names, got {blocked!r}")
    redirect_url = values.get(REDIRECT_URL) or DEFAULT_REDIRECT_URL
    if not isinstance(redirect_url, str):
        raise InvalidInput(f"{REDIRECT_URL} must be a string, got {redirect_url!r}")
    enabled = values.get(EXTENSION_ENABLED) is not False # missing means on
    return list(blocked), redirect_url, enabled


class ConfigStore:
    def __init__(self, path=CONFIG_PATH):
        self.path = str(path)
        self._lock = threading.RLock()
        self._listeners = []
        self._snapshot = None

    def exists(self):
        return os.path.exists(self.path)

    def _load(self):
        try:
            with open(self.path, 'r') as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            return {}
        except (OSError, yaml.YAMLError) as e:
            raise StoreReadFailure(f"Error reading {self.path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise StoreReadFailure(f"{self.path} must contain a mapping, got {type(data).__name__}")
        return data

    def _dump(self, data):
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.config-', suffix='.yaml')
            with os.fdopen(fd, 'w') as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, self.path)
        except (OSError, yaml.YAMLError) as e:
            raise StoreWriteFailure(f"Error writing {self.path}: {e}") from e

    def get(self, keys=None):
        with self._lock:
            data = self._load()
            if self._snapshot is None:
                self._snapshot = copy.deepcopy(data)
        if keys is None:
            return data
        return {key: data[key] for key in keys if key in data}

    def set(self, values):
        with self._lock:
            data = self._load()
            changed = {key for key, value in values.items() if key not in data or data[key] != value}
            if not changed:
                return
            data.update(values)
            self._dump(data)
            self._snapshot = copy.deepcopy(data)
        self._notify(changed, {key: values[key] for key in changed})

    def set_defaults(self, defaults=None):
        """Writes default values only for keys that are missing. Returns the keys written."""
        defaults = DEFAULTS if defaults is None else defaults
        with self._lock:
            data = self._load()
            missing = {key: copy.deepcopy(value) for key, value in defaults.items() if key not in data}
            if missing:
                self.set(missing)
        return set(missing)

    def poll(self):
        """Picks up edits made to the file by someone else since we last looked."""
        with self._lock:
            data = self._load()
            if self._snapshot is None: # first look, nothing to compare against
                self._snapshot = copy.deepcopy(data)
                return set()
            previous = self._snapshot
            changed = {key for key in set(data) | set(previous) if data.get(key) != previous.get(key)}
            self._snapshot = copy.deepcopy(data)
        if changed:
            logging.info(f"Detected external change to {', '.join(sorted(changed))}")
            self._notify(changed, {key: data.get(key) for key in changed})
        return changed

    def subscribe(self, listener):
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self, changed_keys, new_values):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(set(changed_keys), dict(new_values))
            except Exception as e:
                logging.error(f"Change listener {listener!r} failed: {e}")
