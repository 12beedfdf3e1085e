"""SearchRanker: public paper search over the catalog."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from iqps.domain.errors import InvalidURL, ValidationError
from iqps.domain.qp import CatalogPaper, ExamFilter
from iqps.infrastructure.storage.paths import Paths
from iqps.infrastructure.stores.catalog_store import CatalogStore
from iqps.infrastructure.stores.search_query import CANDIDATE_CAP, RANK_DAMPING
from iqps.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 200


@dataclass
class SearchHit:
    """One ranked paper. `paper.filelink` is already a public URL."""

    paper: CatalogPaper
    score: float
    sources: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = self.paper.to_search_dict()
        data["score"] = round(self.score, 6)
        data["matched_by"] = list(self.sources)
        return data


class SearchRanker:
    """
    Fuses fuzzy, full-text and prefix matches into one ranking.

    The candidate generation and fusion run in the database; this class
    validates input, attaches public URLs and reports which lists matched.
    """

    def __init__(
        self,
        store: CatalogStore,
        paths: Paths,
        *,
        damping: int = RANK_DAMPING,
        cap: int = CANDIDATE_CAP,
    ):
        self._store = store
        self._paths = paths
        self._damping = damping
        self._cap = cap

    def search(self, query: str, exam_filter: Optional[ExamFilter] = None) -> List[SearchHit]:
        text = " ".join((query or "").split())
        if not text:
            raise ValidationError("Search query must not be empty.")
        if len(text) > MAX_QUERY_LENGTH:
            raise ValidationError(f"Search query must be at most {MAX_QUERY_LENGTH} characters.")

        exam_filter = exam_filter or ExamFilter.unrestricted()
        rows = self._store.search(text, exam_filter, damping=self._damping, cap=self._cap)

        hits: List[SearchHit] = []
        for row in rows:
            try:
                url = self._paths.url_from_slug(row.paper.filelink)
            except InvalidURL:
                # A bad slug in one row must not take the whole result list down.
                logger.warning("Skipping paper %s with unusable filelink", row.paper.id)
                continue
            sources = [
                name
                for name, rank in (
                    ("fuzzy", row.fuzzy_rank),
                    ("full_text", row.full_text_rank),
                    ("partial", row.partial_rank),
                )
                if rank is not None
            ]
            hits.append(SearchHit(paper=row.paper.with_filelink(url), score=row.score, sources=sources))

        Logger.info(
            f"search query={text!r} exam={exam_filter.format() or '*'} hits={len(hits)}",
            file=LogFiles.SEARCH,
        )
        return hits
