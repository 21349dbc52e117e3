# private_dns/policy.py
# Version: 1.0.0
# Allowlist policy with exact and wildcard domain patterns

"""
Domain Policy

Holds the set of allowed domain patterns and answers whether a query name
is permitted. Patterns are either literal (``example.com``) or wildcard
(``*.example.com``), the latter matching every proper subdomain but not the
base domain itself.

The pattern set is persisted as a JSON array. Mutations return immediately
and hand the save to the reactor thread, so they are safe to call from any
thread; save failures only show up in the log.
"""

import json
import logging
import os
import threading
from typing import Iterable, List, Optional, Set

from twisted.internet import defer

from private_dns.constants import (
    ALLOWLIST_JSON_INDENT,
    DEFAULT_ALLOWED_DOMAINS,
    DEFAULT_ALLOWED_DOMAINS_FILE,
    WILDCARD_PREFIX,
)

logger = logging.getLogger(__name__)


def normalize_domain(domain: str) -> str:
    """Strip surrounding whitespace and one trailing dot, lower-case"""
    domain = domain.strip()
    if domain.endswith("."):
        domain = domain[:-1]
    return domain.lower()


class DomainPolicy:
    """Thread-safe allowlist of domain patterns"""

    def __init__(
        self,
        domains_file: str = DEFAULT_ALLOWED_DOMAINS_FILE,
        default_domains: Iterable[str] = DEFAULT_ALLOWED_DOMAINS,
        reactor=None,
    ):
        if reactor is None:
            from twisted.internet import reactor
        self.domains_file = domains_file
        self.default_domains = tuple(default_domains)
        self._reactor = reactor
        self._domains: Set[str] = set()
        self._lock = threading.RLock()

    def is_allowed(self, domain: Optional[str]) -> bool:
        """
        Check a query name against the allowlist

        An exact pattern match allows the name. Otherwise each parent of the
        name is tried as ``*.<parent>``, narrowest first.
        """
        if not domain or not domain.strip():
            return False

        domain = normalize_domain(domain)

        with self._lock:
            if domain in self._domains:
                return True

            labels = domain.split(".")
            for i in range(1, len(labels)):
                parent = ".".join(labels[i:])
                if f"{WILDCARD_PREFIX}{parent}" in self._domains:
                    return True

        return False

    def add_allowed_domain(self, domain: str):
        """Add a pattern and schedule a save"""
        if not domain or not domain.strip():
            return

        pattern = normalize_domain(domain)
        with self._lock:
            self._domains.add(pattern)
        logger.info(f"Added allowed domain: {pattern}")
        self._schedule_save()

    def remove_allowed_domain(self, domain: str):
        """Remove a pattern and schedule a save"""
        if not domain or not domain.strip():
            return

        pattern = normalize_domain(domain)
        with self._lock:
            self._domains.discard(pattern)
        logger.info(f"Removed allowed domain: {pattern}")
        self._schedule_save()

    def get_allowed_domains(self) -> List[str]:
        """Snapshot of the current patterns, in no particular order"""
        with self._lock:
            return list(self._domains)

    def load_configuration(self) -> defer.Deferred:
        """
        Reload the allowlist from disk

        A missing file is seeded with the default patterns and written back.
        Unreadable or invalid content is logged and the current set is kept.

        Returns:
            Deferred that fires with None once loading has finished
        """
        return defer.maybeDeferred(self._load)

    def _load(self):
        if not os.path.exists(self.domains_file):
            with self._lock:
                self._domains.update(normalize_domain(d) for d in self.default_domains)
                count = len(self._domains)
            self._save()
            logger.info(
                f"Created default configuration with {count} domains at {self.domains_file}"
            )
            return

        try:
            with open(self.domains_file, "r", encoding="utf-8") as f:
                domains = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load allowed domains from {self.domains_file}: {e}")
            return

        if not isinstance(domains, list) or not all(isinstance(d, str) for d in domains):
            logger.error(
                f"Failed to load allowed domains from {self.domains_file}: "
                "expected a JSON array of strings"
            )
            return

        loaded = {normalize_domain(d) for d in domains if d.strip()}
        with self._lock:
            self._domains = loaded
        logger.info(f"Loaded {len(loaded)} allowed domains from {self.domains_file}")

    def _schedule_save(self):
        self._reactor.callFromThread(self._save)

    def _save(self):
        """Write the current patterns to disk, logging any failure"""
        domains = sorted(self.get_allowed_domains())
        try:
            with open(self.domains_file, "w", encoding="utf-8") as f:
                json.dump(domains, f, indent=ALLOWLIST_JSON_INDENT)
                f.write("\n")
        except OSError as e:
            logger.error(f"Failed to save allowed domains to {self.domains_file}: {e}")

    def __contains__(self, pattern: str) -> bool:
        with self._lock:
            return normalize_domain(pattern) in self._domains

    def __len__(self) -> int:
        with self._lock:
            return len(self._domains)
