#redirector.py
"""This script is an addon for mitmproxy. It is the part that actually enforces the rules: every top-level page navigation going through the proxy is checked against the active redirect rules in the rules database, and a match gets answered with a redirect. """

import functools
import logging
import os
import re
import sqlite3

from mitmproxy import http

import blocker
from rules import MAIN_FRAME

DB_PATH = os.environ.get('REDIRECTOR_RULES_DB', blocker.RULES_DB_PATH)
SEPARATOR = r'(?:[^a-z0-9_\-.%]|$)'



logging.basicConfig(level=logging.INFO, format='%(asctime)s - [redirector.py] - %(message)s')

RULE_STORE = None
ACTIVE_RULES = []
loaded_revision = None


@functools.lru_cache(maxsize=4096)
def url_filter_to_regex(url_filter):
    """
    Translates a urlFilter pattern to a regex.

    `*` matches anything, `^` a separator (or the end of the URL), a leading `||` anchors to
    the start of the host, a leading or trailing `|` anchors to the start or end of the URL.
    Without anchors the pattern may match anywhere in the URL.
    """
    pattern = url_filter
    prefix = ''
    suffix = ''
    if pattern.startswith('||'):
        prefix = r'^[a-z][a-z0-9+.\-]*://(?:[^/?#]*\.)?'
        pattern = pattern[2:]
    elif pattern.startswith('|'):
        prefix = '^'
        pattern = pattern[1:]
    if pattern.endswith('|'):
        suffix = '$'
        pattern = pattern[:-1]

    body = []
    for char in pattern:
        if char == '*':
            body.append('.*')
        elif char == '^':
            body.append(SEPARATOR)
        else:
            body.append(re.escape(char))
    return re.compile(prefix + ''.join(body) + suffix, re.IGNORECASE)


def url_filter_matches(url_filter, url):
    return url_filter_to_regex(url_filter).search(url) is not None


def is_navigation(request):
    """True for top-level page loads; frames, scripts, images etc. are left alone."""
    dest = request.headers.get('Sec-Fetch-Dest')
    if dest is not None:
        return dest == 'document'
    # old clients without fetch metadata
    return request.method == 'GET' and 'text/html' in request.headers.get('Accept', '')


def find_rule(rules, url):
    for rule in sorted(rules, key=lambda r: (-r.priority, r.id)):
        if MAIN_FRAME not in rule.resource_types:
            continue
        if url.startswith(rule.redirect_url): # never bounce the redirect target itself
            continue
        if url_filter_matches(rule.url_filter, url):
            return rule
    return None


def refresh_rules():
    global ACTIVE_RULES, loaded_revision

    revision = RULE_STORE.revision()
    if revision != loaded_revision:
        ACTIVE_RULES = RULE_STORE.list_active_rules()
        loaded_revision = revision
        logging.info(f"Loaded {len(ACTIVE_RULES)} redirect rules (revision {revision})")
    return ACTIVE_RULES


def load(loader):
    global RULE_STORE
    RULE_STORE = blocker.RuleStore(DB_PATH)
    refresh_rules()
    logging.info("Rules database ready.")


def request(flow: http.HTTPFlow):
    if not RULE_STORE or not is_navigation(flow.request):
        return

    try:
        rules = refresh_rules()
    except sqlite3.Error as e:
        logging.warning(f"Could not read redirect rules, keeping the previous set: {e}")
        rules = ACTIVE_RULES

    url = flow.request.pretty_url
    rule = find_rule(rules, url)
    if rule is None:
        return

    flow.response = http.Response.make(302, b"", {"Location": rule.redirect_url})
    logging.info(f"Redirected {url} -> {rule.redirect_url} (rule {rule.id})")


def done():
    global RULE_STORE, loaded_revision
    if RULE_STORE:
        RULE_STORE.close()
        RULE_STORE = None
        loaded_revision = None
