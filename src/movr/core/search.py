"""Catalog search — fuzzy matching over every package in the registry."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from difflib import SequenceMatcher
from typing import Optional

from movr.core.models import PackageKind, PackageMetadata
from movr.core.registry import format_apt

logger = logging.getLogger(__name__)

# Minimum similarity (0..1) for a field to count as a match
SIMILARITY_THRESHOLD = 0.6
FIELD_WEIGHTS = {"name": 3, "description": 2, "tags": 1}


@dataclass
class SearchFilters:
    package_kind: Optional[PackageKind] = None
    min_endorsements: int = 0
    limit: Optional[int] = None


@dataclass
class SearchHit:
    package: PackageMetadata
    score: float
    matched_field: Optional[str] = None


@dataclass
class SearchResult:
    """Ranked hits plus how many registry entries were unusable."""
    hits: list[SearchHit] = field(default_factory=list)
    total: int = 0
    skipped: int = 0

    @property
    def packages(self) -> list[PackageMetadata]:
        return [h.package for h in self.hits]


def similarity(query: str, text: str) -> float:
    """Best ratio of *query* against *text* or any same-length window of it."""
    query = query.lower().strip()
    text = text.lower()
    if not query or not text:
        return 0.0
    if query == text:
        return 1.0
    best = SequenceMatcher(None, query, text).ratio()
    width = len(query)
    if len(text) > width:
        matcher = SequenceMatcher(None, "", query)
        for start in range(len(text) - width + 1):
            matcher.set_seq1(text[start:start + width])
            if matcher.real_quick_ratio() <= best or matcher.quick_ratio() <= best:
                continue
            best = max(best, matcher.ratio())
            if best == 1.0:
                break
    return best


def _score(query: str, pkg: PackageMetadata) -> tuple[float, Optional[str]]:
    candidates = [
        ("name", similarity(query, pkg.name)),
        ("description", similarity(query, pkg.description or "")),
        ("tags", max((similarity(query, t) for t in pkg.tags), default=0.0)),
    ]
    # Highest similarity wins, ties go to the heavier field
    name, score = max(candidates, key=lambda c: (c[1], FIELD_WEIGHTS[c[0]]))
    return score, name


def rank(packages: list[PackageMetadata], text: str,
         filters: Optional[SearchFilters] = None) -> SearchResult:
    """Fuzzy-rank *packages* against *text*, then apply *filters*."""
    filters = filters or SearchFilters()
    result = SearchResult(total=len(packages))

    usable = []
    for pkg in packages:
        if not pkg.name or not pkg.version:
            result.skipped += 1
            continue
        usable.append(pkg)
    if result.skipped:
        logger.warning("Skipped %d registry entries missing a name or version", result.skipped)

    query = (text or "").strip()
    if not query:
        hits = [SearchHit(pkg, 1.0) for pkg in usable]
    else:
        hits = []
        for pkg in usable:
            score, matched = _score(query, pkg)
            if score >= SIMILARITY_THRESHOLD:
                hits.append(SearchHit(pkg, score, matched))
        exact = query.lower()
        hits.sort(key=lambda h: (
            -h.score,
            h.package.name.lower() != exact,
            -FIELD_WEIGHTS.get(h.matched_field or "", 0),
            h.package.name,
        ))

    if filters.package_kind is not None:
        hits = [h for h in hits if h.package.package_kind == filters.package_kind]
    if filters.min_endorsements:
        hits = [h for h in hits if len(h.package.endorsements) >= filters.min_endorsements]
    if filters.limit is not None and filters.limit >= 0:
        hits = hits[:filters.limit]

    result.hits = hits
    return result


class CatalogSearch:
    def __init__(self, registry):
        self.registry = registry

    async def fetch_all(self) -> list[PackageMetadata]:
        return await self.registry.get_all_packages()

    async def query(self, text: str, filters: Optional[SearchFilters] = None) -> SearchResult:
        packages = await self.fetch_all()
        result = rank(packages, text, filters)
        logger.info(
            "Search %r matched %d of %d packages", text, len(result.hits), result.total
        )
        return result


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def _published_at(pkg: PackageMetadata) -> Optional[str]:
    if not pkg.timestamp_seconds:
        return None
    return datetime.fromtimestamp(pkg.timestamp_seconds, tz=timezone.utc).isoformat()


def summary_view(pkg: PackageMetadata) -> dict:
    return {
        "name": pkg.name,
        "version": pkg.version,
        "description": pkg.description,
        "kind": pkg.package_kind.label,
        "endorsements": len(pkg.endorsements),
        "downloads": pkg.download_count,
        "tips": format_apt(pkg.total_tips),
    }


def detail_view(pkg: PackageMetadata) -> dict:
    view = summary_view(pkg)
    view.update({
        "publisher": pkg.publisher,
        "content_address": pkg.content_address,
        "tags": list(pkg.tags),
        "published_at": _published_at(pkg),
        "endorsers": list(pkg.endorsements),
        "homepage": pkg.homepage,
        "repository": pkg.repository,
        "license": pkg.license,
    })
    return view
