#rules.py
"""This is the "brain" of the application. It is stateless and has one core function: to turn the user's settings (blocked websites, redirect URL, on/off switch) into the exact list of redirect rules that should be active right now."""

import logging
from dataclasses import dataclass
from urllib.parse import urlparse

from errors import InvalidInput


RULE_PRIORITY = 1
ID_BLOCK_SIZE = 10 # each domain owns ids base..base+9, only 4 are used
MAIN_FRAME = "main_frame"
ALLOWED_SCHEMES = ("http", "https")

# order matters, the offset of a pattern is its position here
URL_FILTER_TEMPLATES = (
    "*://*.{domain}/*",  # any subdomain, with path
    "*://{domain}/*",    # bare domain, with path
    "*://{domain}",      # bare domain, no path
    "*://www.{domain}",  # www, no path
)


logging.basicConfig(level=logging.INFO, format='%(asctime)s - [rules.py] - %(message)s')


@dataclass(frozen=True)
class Rule:
    id: int
    priority: int
    url_filter: str
    redirect_url: str
    resource_types: tuple = (MAIN_FRAME,)

    def to_dict(self):
        """Shape understood by the enforcement side (same layout as a declarativeNetRequest rule)."""
        return {
            "id": self.id,
            "priority": self.priority,
            "action": {
                "type": "redirect",
                "redirect": {"url": self.redirect_url},
            },
            "condition": {
                "urlFilter": self.url_filter,
                "resourceTypes": list(self.resource_types),
            },
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=int(data["id"]),
            priority=int(data["priority"]),
            url_filter=data["condition"]["urlFilter"],
            redirect_url=data["action"]["redirect"]["url"],
            resource_types=tuple(data["condition"].get("resourceTypes", [MAIN_FRAME])),
        )


def base_id(index):
    return (index + 1) * ID_BLOCK_SIZE


def check_redirect_url(redirect_url):
    if not isinstance(redirect_url, str):
        raise InvalidInput(f"Redirect URL must be a string, got {redirect_url!r}")
    parsed = urlparse(redirect_url)
    if parsed.scheme not in ALLOWED_SCHEMES or not parsed.netloc:
        raise InvalidInput(f"Redirect URL must be an absolute http(s) URL, got {redirect_url!r}")
    return redirect_url


def rules_for_domain(domain, index, redirect_url):
    first_id = base_id(index)
    return [
        Rule(
            id=first_id + offset,
            priority=RULE_PRIORITY,
            url_filter=template.format(domain=domain),
            redirect_url=redirect_url,
        )
        for offset, template in enumerate(URL_FILTER_TEMPLATES)
    ]


def compute_rules(domains, redirect_url, enabled=True) -> list:
    """
    Builds the full rule set for the given settings.

    Returns an empty list when disabled or when there is nothing to block, otherwise
    four rules per domain in input order. Duplicate domains are not collapsed; they just
    get their own id block.
    """
    if not enabled or not domains:
        return []

    check_redirect_url(redirect_url)

    rule_set = []
    for index, domain in enumerate(domains):
        rule_set.extend(rules_for_domain(domain, index, redirect_url))

    logging.debug(f"Computed {len(rule_set)} rules for {len(domains)} domains")
    return rule_set
