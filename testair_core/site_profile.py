"""Persistent per-domain selector cache."""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable
from urllib.parse import urlparse

from .errors import ArtifactIOError
from .models import CompiledStep, SiteProfile

LOGGER = logging.getLogger("testair.site_profile")

DEFAULT_DOMAIN = "default"
_UNSAFE_DOMAIN_CHARS = re.compile(r"[^a-z0-9.-]", re.IGNORECASE)


def domain_for_steps(steps: Iterable[CompiledStep]) -> str:
    """Profile key: hostname of the first goto step, else ``default``."""
    for step in steps:
        if step.type != "goto":
            continue
        url = step.payload.get("url")
        if not isinstance(url, str):
            return DEFAULT_DOMAIN
        hostname = urlparse(url).hostname
        if not hostname:
            return DEFAULT_DOMAIN
        return _UNSAFE_DOMAIN_CHARS.sub("_", hostname)
    return DEFAULT_DOMAIN


class SiteProfileStore:
    """Reads and writes ``<root>/<domain>.json`` profile documents.

    Profiles are overwritten wholesale; concurrent runs against the same
    domain are last-write-wins.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, domain: str) -> Path:
        return self.root / f"{domain}.json"

    def load(self, domain: str) -> SiteProfile:
        path = self.path_for(domain)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return SiteProfile(domain=domain)
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Ignoring unreadable site profile %s: %s", path, exc)
            return SiteProfile(domain=domain)
        if not isinstance(raw, dict):
            LOGGER.warning("Ignoring malformed site profile %s", path)
            return SiteProfile(domain=domain)
        profile = SiteProfile.from_dict(raw)
        profile.domain = domain
        return profile

    def save(self, profile: SiteProfile) -> Path:
        path = self.path_for(profile.domain)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(profile.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            raise ArtifactIOError(f"Failed to write site profile {path}: {exc}") from exc
        return path
