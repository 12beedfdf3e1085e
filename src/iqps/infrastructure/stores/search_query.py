"""
Hybrid search query construction.

The ranking runs entirely inside PostgreSQL as one statement:

1. `filtered`: approved, live papers passing the exam filter (papers with an
   unknown exam always pass).
2. Three independently capped candidate lists, each with its own rank:
   - `fuzzy`: trigram similarity on `course_code || ' ' || course_name`
   - `full_text`: websearch-style query against the English tsvector
   - `partial`: every query token used as a prefix (`tok:*`)
3. Candidates are outer-joined by id and ordered by the fused score
   `sum(1 / (RANK_DAMPING + rank))` over the lists a paper appears in.

RANK_DAMPING and CANDIDATE_CAP have no derivation behind them; they are kept
at the historical values and are safe to tune.
"""

from __future__ import annotations

import re
from typing import List, Optional

from sqlalchemy import Select, Text, bindparam, cast, false, func, literal_column, or_, select
from sqlalchemy.sql.elements import ColumnElement

from iqps.domain.qp import ExamFilter
from iqps.infrastructure.stores.models import PaperModel

RANK_DAMPING = 50
CANDIDATE_CAP = 30

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)

_ENGLISH = literal_column("'english'::regconfig")
_SIMPLE = literal_column("'simple'::regconfig")


def reciprocal_rank_score(*ranks: Optional[int], damping: int = RANK_DAMPING) -> float:
    """Fused score of one paper given its rank in each list (`None` = absent)."""
    return sum(1.0 / (damping + rank) for rank in ranks if rank is not None)


def exam_filter_clause(exam_column, exam_filter: ExamFilter) -> Optional[ColumnElement[bool]]:
    """WHERE clause for an exam filter, or None when the filter is unrestricted."""
    if exam_filter.is_unrestricted:
        return None
    conditions = [exam_column == "", exam_column.is_(None)]
    if exam_filter.exams:
        conditions.append(exam_column.in_(sorted(exam_filter.exams)))
    if exam_filter.all_class_tests:
        conditions.append(exam_column.like("ct%"))
    return or_(*conditions)


def prefix_tsquery_text(query: str) -> str:
    """`data struc` -> `data:* & struc:*`; empty when the query has no word tokens."""
    tokens = _TOKEN_RE.findall((query or "").lower())
    return " & ".join(f"{token}:*" for token in tokens)


def build_search_statement(
    query: str,
    exam_filter: ExamFilter,
    *,
    damping: int = RANK_DAMPING,
    cap: int = CANDIDATE_CAP,
) -> Select:
    table = PaperModel.__table__

    where: List[ColumnElement[bool]] = [
        table.c.approve_status.is_(True),
        table.c.is_deleted.is_(False),
    ]
    clause = exam_filter_clause(table.c.exam, exam_filter)
    if clause is not None:
        where.append(clause)
    filtered = select(table).where(*where).cte("filtered")
    f = filtered.c

    q = bindparam("query", value=query, type_=Text)
    details = f.course_code + " " + f.course_name

    similarity = func.similarity(details, q)
    fuzzy = (
        select(
            f.id.label("id"),
            func.row_number().over(order_by=similarity.desc()).label("rank_ix"),
        )
        .where(details.op("%>>", is_comparison=True)(q))
        .order_by(similarity.desc())
        .limit(cap)
        .cte("fuzzy")
    )

    english_doc = func.to_tsvector(_ENGLISH, details)
    web_query = func.websearch_to_tsquery(_ENGLISH, q)
    full_text_rank = func.ts_rank_cd(english_doc, web_query)
    full_text = (
        select(
            f.id.label("id"),
            func.row_number().over(order_by=full_text_rank.desc()).label("rank_ix"),
        )
        .where(english_doc.op("@@", is_comparison=True)(web_query))
        .order_by(full_text_rank.desc())
        .limit(cap)
        .cte("full_text")
    )

    prefix_text = prefix_tsquery_text(query)
    simple_doc = func.to_tsvector(_SIMPLE, details)
    prefix_query = func.to_tsquery(_SIMPLE, cast(bindparam("prefix_query", value=prefix_text), Text))
    partial_rank = func.ts_rank_cd(simple_doc, prefix_query)
    partial_where = simple_doc.op("@@", is_comparison=True)(prefix_query) if prefix_text else false()
    partial = (
        select(
            f.id.label("id"),
            func.row_number().over(order_by=partial_rank.desc()).label("rank_ix"),
        )
        .where(partial_where)
        .order_by(partial_rank.desc())
        .limit(cap)
        .cte("partial_search")
    )

    candidates = (
        select(fuzzy.c.id)
        .union(select(full_text.c.id), select(partial.c.id))
        .cte("candidates")
    )

    score = (
        func.coalesce(1.0 / (damping + fuzzy.c.rank_ix), 0.0)
        + func.coalesce(1.0 / (damping + full_text.c.rank_ix), 0.0)
        + func.coalesce(1.0 / (damping + partial.c.rank_ix), 0.0)
    )

    return (
        select(
            filtered,
            score.label("score"),
            fuzzy.c.rank_ix.label("fuzzy_rank"),
            full_text.c.rank_ix.label("full_text_rank"),
            partial.c.rank_ix.label("partial_rank"),
        )
        .select_from(
            candidates.join(filtered, filtered.c.id == candidates.c.id)
            .outerjoin(fuzzy, fuzzy.c.id == candidates.c.id)
            .outerjoin(full_text, full_text.c.id == candidates.c.id)
            .outerjoin(partial, partial.c.id == candidates.c.id)
        )
        .order_by(score.desc(), filtered.c.id)
    )
