#blocker.py
"""This module contains all logic for pushing rules into the enforcement side. It acts as the "enforcement arm": `RuleStore` is the durable copy of the active redirect rules (a SQLite file the proxy addon reads), and `apply_rules` replaces whatever is in there with a freshly computed rule set.
"""

import json
import logging
import sqlite3
from contextlib import closing
from dataclasses import dataclass

from errors import EnforcementClearFailure, EnforcementInstallFailure, RuleUpdateError
from rules import Rule

RULES_DB_PATH = "rules.db"
BATCH_SIZE = 50
MAX_RULES_PER_UPDATE = 50 # ceiling on added rules per update call
MAX_DYNAMIC_RULES = 5000

logging.basicConfig(level=logging.INFO, format='%(asctime)s - [blocker.py] - %(message)s')


def setup_database(conn):
    with closing(conn.cursor()) as cursor:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS rules (
                id INTEGER PRIMARY KEY,
                priority INTEGER NOT NULL,
                url_filter TEXT NOT NULL,
                resource_types TEXT NOT NULL,
                redirect_url TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """)
        cursor.execute("INSERT OR IGNORE INTO meta (key, value) VALUES ('revision', 0)")
    conn.commit()


class RuleStore:
    """Active redirect rules, one row per rule. Every `update` call is a single transaction."""

    def __init__(self, db_path=RULES_DB_PATH, max_rules_per_update=MAX_RULES_PER_UPDATE,
                 max_rules=MAX_DYNAMIC_RULES):
        self.db_path = str(db_path)
        self.max_rules_per_update = max_rules_per_update
        self.max_rules = max_rules
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.execute("PRAGMA journal_mode=WAL;")  # proxy process reads while we write
        setup_database(self.conn)

    def list_active_rules(self):
        with closing(self.conn.cursor()) as cursor:
            cursor.execute(
                "SELECT id, priority, url_filter, resource_types, redirect_url FROM rules ORDER BY id"
            )
            rows = cursor.fetchall()
        return [
            Rule(
                id=row[0],
                priority=row[1],
                url_filter=row[2],
                resource_types=tuple(json.loads(row[3])),
                redirect_url=row[4],
            )
            for row in rows
        ]

    def revision(self):
        with closing(self.conn.cursor()) as cursor:
            cursor.execute("SELECT value FROM meta WHERE key = 'revision'")
            row = cursor.fetchone()
        return row[0] if row else 0

    def update(self, add_rules=(), remove_rule_ids=()):
        add_rules = list(add_rules)
        remove_rule_ids = list(remove_rule_ids)

        if len(add_rules) > self.max_rules_per_update:
            raise RuleUpdateError(
                f"Cannot add {len(add_rules)} rules in one update (limit {self.max_rules_per_update})"
            )
        new_ids = [rule.id for rule in add_rules]
        if len(set(new_ids)) != len(new_ids):
            raise RuleUpdateError("Rules added in one update must have unique ids")

        try:
            with self.conn, closing(self.conn.cursor()) as cursor:
                cursor.executemany("DELETE FROM rules WHERE id = ?", [(rule_id,) for rule_id in remove_rule_ids])

                if new_ids:
                    placeholders = ", ".join("?" for _ in new_ids)
                    cursor.execute(f"SELECT id FROM rules WHERE id IN ({placeholders})", new_ids)
                    taken = sorted(row[0] for row in cursor.fetchall())
                    if taken:
                        raise RuleUpdateError(f"Rule ids already in use: {taken}")

                    cursor.execute("SELECT COUNT(*) FROM rules")
                    active = cursor.fetchone()[0]
                    if active + len(add_rules) > self.max_rules:
                        raise RuleUpdateError(
                            f"Adding {len(add_rules)} rules would exceed the limit of {self.max_rules}"
                        )

                    cursor.executemany(
                        "INSERT INTO rules (id, priority, url_filter, resource_types, redirect_url) VALUES (?, ?, ?, ?, ?)",
                        [
                            (rule.id, rule.priority, rule.url_filter, json.dumps(list(rule.resource_types)), rule.redirect_url)
                            for rule in add_rules
                        ],
                    )

                cursor.execute("UPDATE meta SET value = value + 1 WHERE key = 'revision'")
        except sqlite3.Error as e:
            raise RuleUpdateError(f"Rule database error: {e}") from e

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None


@dataclass
class ApplyReport:
    removed: int = 0
    installed: int = 0
    batches: int = 0


def clear_rules(rule_store):
    """Removes every active rule in one call. Returns how many were removed."""
    try:
        rule_ids = [rule.id for rule in rule_store.list_active_rules()]
        if rule_ids:
            rule_store.update(remove_rule_ids=rule_ids)
    except (RuleUpdateError, sqlite3.Error) as e:
        raise EnforcementClearFailure(f"Failed to clear existing rules: {e}") from e
    return len(rule_ids)


def make_batches(rule_set, batch_size=BATCH_SIZE):
    return [rule_set[i:i + batch_size] for i in range(0, len(rule_set), batch_size)]


def apply_rules(rule_store, rule_set, batch_size=BATCH_SIZE):
    """
    Replaces the active rules with `rule_set`: clear everything, then add in batches.

    If the clear step fails nothing is installed. If a batch fails, the batches before it
    stay installed and EnforcementInstallFailure says which one broke; the caller is
    expected to retry a full apply.
    """
    report = ApplyReport()
    report.removed = clear_rules(rule_store)

    if not rule_set:
        logging.info(f"Cleared {report.removed} rules. No rules to install.")
        return report

    for batch_index, batch in enumerate(make_batches(list(rule_set), batch_size)):
        try:
            rule_store.update(add_rules=batch)
        except (RuleUpdateError, sqlite3.Error) as e:
            rule_ids = [rule.id for rule in batch]
            raise EnforcementInstallFailure(
                f"Failed to install batch {batch_index} (rule ids {rule_ids[0]}-{rule_ids[-1]}): {e}",
                batch_index=batch_index,
                rule_ids=rule_ids,
            ) from e
        report.installed += len(batch)
        report.batches += 1

    logging.info(f"Created {report.installed} redirect rules in {report.batches} batches (removed {report.removed})")
    return report
