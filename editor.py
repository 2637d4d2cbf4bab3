#editor.py
"""The editing side: everything a user can change (blocked websites, redirect URL, on/off). Each edit writes the store and then asks the watcher to sync with the values it just wrote, so the sync never races a re-read of the file."""

import logging
import re
from dataclasses import dataclass

import store
from errors import InvalidInput

logging.basicConfig(level=logging.INFO, format='%(asctime)s - [editor.py] - %(message)s')


@dataclass
class EditResult:
    message: str
    websites: list
    redirect_url: str
    enabled: bool
    sync: object = None # Future[SyncResult], None when no sync was requested


def normalize_domain(text):
    website = (text or "").strip().lower()
    website = re.sub(r'^https?://', '', website)
    website = re.sub(r'^www\.', '', website)
    website = re.sub(r'/$', '', website)
    if not website:
        raise InvalidInput("Please enter a website")
    return website


def normalize_redirect_url(text):
    url = (text or "").strip()
    if not url:
        raise InvalidInput("Please enter a redirect URL")
    if not url.startswith('http://') and not url.startswith('https://'):
        url = 'https://' + url
    return url


class Editor:
    def __init__(self, config_store, watcher=None):
        self.config_store = config_store
        self.watcher = watcher

    def load_state(self):
        values = self.config_store.get(sorted(store.SYNC_KEYS))
        return store.read_sync_settings(values)

    def _finish(self, message, websites, redirect_url, enabled):
        future = None
        if self.watcher is not None:
            future = self.watcher.request_sync(websites, redirect_url, enabled)
        logging.info(message)
        return EditResult(message, list(websites), redirect_url, enabled, future)

    def add_domain(self, text):
        website = normalize_domain(text)
        websites, redirect_url, enabled = self.load_state()
        if website in websites:
            raise InvalidInput("Website already in the list")
        websites.append(website)
        self.config_store.set({store.BLOCKED_WEBSITES: websites})
        return self._finish(f"Website {website} added successfully!", websites, redirect_url, enabled)

    def remove_domain(self, text):
        website = normalize_domain(text)
        websites, redirect_url, enabled = self.load_state()
        if website not in websites:
            raise InvalidInput(f"{website} is not in the list")
        websites = [site for site in websites if site != website]
        self.config_store.set({store.BLOCKED_WEBSITES: websites})
        return self._finish(f"Website {website} removed successfully!", websites, redirect_url, enabled)

    def clear_domains(self):
        _, redirect_url, enabled = self.load_state()
        self.config_store.set({store.BLOCKED_WEBSITES: []})
        return self._finish("All websites cleared!", [], redirect_url, enabled)

    def toggle_enabled(self):
        websites, redirect_url, enabled = self.load_state()
        enabled = not enabled
        self.config_store.set({store.EXTENSION_ENABLED: enabled})
        message = "Redirector enabled!" if enabled else "Redirector disabled!"
        return self._finish(message, websites, redirect_url, enabled)

    def set_redirect_url(self, text):
        redirect_url = normalize_redirect_url(text)
        websites, _, enabled = self.load_state()
        self.config_store.set({store.REDIRECT_URL: redirect_url})
        return self._finish(f"Redirect URL set to {redirect_url}", websites, redirect_url, enabled)

    def sync_now(self):
        websites, redirect_url, enabled = self.load_state()
        return self._finish("Sync requested.", websites, redirect_url, enabled)
