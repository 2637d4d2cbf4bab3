"""Shared pytest fixtures for the redirector tests."""

import pytest

from blocker import RuleStore
from errors import RuleUpdateError
from store import ConfigStore
from watcher import ConfigWatcher


class RecordingRuleStore:
    """In-memory rule store that records every update call and can be told to fail."""

    def __init__(self, fail_on_call=None, fail_listing=False):
        self.rules = {}
        self.calls = []
        self.fail_on_call = fail_on_call
        self.fail_listing = fail_listing

    def list_active_rules(self):
        if self.fail_listing:
            raise RuleUpdateError("listing failed")
        return [self.rules[rule_id] for rule_id in sorted(self.rules)]

    def update(self, add_rules=(), remove_rule_ids=()):
        add_rules, remove_rule_ids = list(add_rules), list(remove_rule_ids)
        self.calls.append((add_rules, remove_rule_ids))
        if self.fail_on_call is not None and len(self.calls) - 1 == self.fail_on_call:
            raise RuleUpdateError("update rejected")
        for rule_id in remove_rule_ids:
            self.rules.pop(rule_id, None)
        for rule in add_rules:
            self.rules[rule.id] = rule

    @property
    def add_calls(self):
        return [add for add, remove in self.calls if add]

    @property
    def remove_calls(self):
        return [remove for add, remove in self.calls if remove]


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config.yaml"


@pytest.fixture
def config_store(config_path):
    return ConfigStore(config_path)


@pytest.fixture
def rule_store(tmp_path):
    store = RuleStore(tmp_path / "rules.db")
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def watcher(config_store, rule_store):
    return ConfigWatcher(config_store, rule_store)
