"""Multi-strategy element lookup with a learned per-domain cache."""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from playwright.async_api import Error as PlaywrightError

from .browser import LocatorLike, PageLike
from .errors import LocatorResolutionError
from .models import SiteProfile

LOGGER = logging.getLogger("testair.locator")

PROBE_TIMEOUT_MS = 2000
LEARNING_STRATEGIES = ("explicit", "profile")


@dataclass
class LocatorCandidate:
    """A named way of finding an element from a target description."""

    strategy: str
    detail: str
    resolve: Callable[[PageLike], LocatorLike]
    selector: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.strategy}:{self.detail}"


@dataclass
class ResolvedLocator:
    locator: LocatorLike
    candidate: LocatorCandidate


def _css(selector: str) -> Callable[[PageLike], LocatorLike]:
    return lambda page: page.locator(selector).first


def build_candidates(target: str, selector: Optional[str], profile: SiteProfile) -> List[LocatorCandidate]:
    """Ordered candidates: explicit selector, remembered selector, then heuristics."""
    normalized = target.strip()
    candidates: List[LocatorCandidate] = []

    if selector:
        candidates.append(LocatorCandidate("explicit", selector, _css(selector), selector=selector))
    remembered = profile.remembered(normalized)
    if remembered:
        candidates.append(LocatorCandidate("profile", remembered, _css(remembered), selector=remembered))

    name_attr = f"[name={json.dumps(normalized)}]"
    aria_attr = f"[aria-label={json.dumps(normalized)}]"
    candidates.extend([
        LocatorCandidate("role(button)", normalized, lambda page: page.get_by_role("button", name=normalized).first),
        LocatorCandidate("role(link)", normalized, lambda page: page.get_by_role("link", name=normalized).first),
        LocatorCandidate("label", normalized, lambda page: page.get_by_label(normalized).first),
        LocatorCandidate("placeholder", normalized, lambda page: page.get_by_placeholder(normalized).first),
        LocatorCandidate("text", normalized, lambda page: page.get_by_text(normalized, exact=True).first),
        LocatorCandidate("text-fuzzy", normalized, lambda page: page.get_by_text(normalized).first),
        LocatorCandidate("css", name_attr, _css(name_attr)),
        LocatorCandidate("css", aria_attr, _css(aria_attr)),
    ])
    return candidates


async def resolve_locator(
    page: PageLike,
    target: str,
    selector: Optional[str],
    profile: SiteProfile,
    timeout_ms: int,
) -> ResolvedLocator:
    """Probe candidates in order and return the first that attaches.

    Only explicit and profile wins are written back into ``profile``; a
    heuristic win leaves the cache untouched.

    Raises:
        LocatorResolutionError: If nothing attaches before ``timeout_ms`` elapses.
    """
    normalized = target.strip()
    deadline = time.monotonic() + timeout_ms / 1000
    tried: List[str] = []

    for candidate in build_candidates(normalized, selector, profile):
        remaining_ms = (deadline - time.monotonic()) * 1000
        if remaining_ms <= 0:
            break
        tried.append(candidate.label)
        try:
            locator = candidate.resolve(page)
            await locator.wait_for(state="attached", timeout=min(remaining_ms, PROBE_TIMEOUT_MS))
        except PlaywrightError as exc:
            LOGGER.debug("Candidate %s did not attach: %s", candidate.label, exc)
            continue

        LOGGER.info("Resolved %r via %s", normalized, candidate.label)
        if candidate.strategy in LEARNING_STRATEGIES and candidate.selector:
            profile.remember(normalized, candidate.selector)
        return ResolvedLocator(locator=locator, candidate=candidate)

    raise LocatorResolutionError(normalized, tried)
