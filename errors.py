#errors.py
"""Failures a synchronization pass can run into. Everything here is caught at the pass boundary in watcher.py, so none of it takes the process down."""


class SyncError(Exception):
    """Base class for every failure surfaced by a synchronization pass."""


class StoreReadFailure(SyncError):
    pass


class StoreWriteFailure(SyncError):
    pass


class InvalidInput(SyncError):
    """Bad user input, e.g. an empty domain or a redirect URL without a usable scheme."""


class EnforcementClearFailure(SyncError):
    """The old rules could not be removed. No new rules were installed."""


class EnforcementInstallFailure(SyncError):
    """One of the add batches was rejected. Batches before it stay installed."""

    def __init__(self, message, batch_index, rule_ids=()):
        super().__init__(message)
        self.batch_index = batch_index
        self.rule_ids = tuple(rule_ids)


class RuleUpdateError(Exception):
    """Raised by the rule store when an update breaks its limits or id uniqueness."""
