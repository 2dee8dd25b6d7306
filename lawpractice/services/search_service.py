import logging
import re
import time
from collections import Counter
from typing import Any, Dict, List, Optional

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..models.database import Document, SearchQuery, User
from ..models.enums import DocumentStatus, DocumentType
from .text_analysis import tokenize

logger = logging.getLogger(__name__)

NAME_MATCH_BOOST = 0.2
EXCERPT_CONTEXT = 100
SENTENCE_SPLIT = re.compile(r"(?<=[.!?。！？；;])\s*|\n+")


def searchable_text(document: Document) -> str:
    parts = [
        document.original_name,
        document.description,
        document.category,
        " ".join(document.tags or []),
        document.case.title if document.case is not None else None,
        document.extracted_text,
    ]
    return "\n".join(part for part in parts if part)


def query_terms(query: str) -> List[str]:
    terms = [word for word in query.lower().split() if word]
    for token in tokenize(query):
        if token not in terms:
            terms.append(token)
    return terms


def build_excerpt(text: str, query: str) -> str:
    if not text:
        return ""
    lowered = text.lower()
    for term in [query.lower()] + query_terms(query):
        position = lowered.find(term)
        if position >= 0:
            start = max(0, position - EXCERPT_CONTEXT)
            end = min(len(text), position + len(term) + EXCERPT_CONTEXT)
            excerpt = text[start:end].strip()
            return f"{'...' if start > 0 else ''}{excerpt}{'...' if end < len(text) else ''}"
    return text[:200] + ("..." if len(text) > 200 else "")


def build_highlights(text: str, query: str, limit: int = 3) -> List[str]:
    terms = query_terms(query)
    highlights = []
    for sentence in SENTENCE_SPLIT.split(text or ""):
        sentence = sentence.strip()
        if sentence and any(term in sentence.lower() for term in terms):
            highlights.append(sentence)
            if len(highlights) == limit:
                break
    return highlights


class DocumentSearchService:
    """TF-IDF keyword search over a firm's latest documents."""

    def _candidates(self, db: Session, firm_id: int, filters: Dict[str, Any]) -> List[Document]:
        query = db.query(Document).filter(Document.firm_id == firm_id, Document.is_latest.is_(True))
        if filters.get("case_id") is not None:
            query = query.filter(Document.case_id == filters["case_id"])
        if filters.get("document_type"):
            query = query.filter(Document.document_type == DocumentType(filters["document_type"]).value)
        if filters.get("status"):
            query = query.filter(Document.status == DocumentStatus(filters["status"]).value)
        if filters.get("date_from"):
            query = query.filter(Document.created_at >= filters["date_from"])
        if filters.get("date_to"):
            query = query.filter(Document.created_at <= filters["date_to"])
        return query.order_by(Document.id).all()

    def rank(self, documents: List[Document], query: str) -> List[Dict[str, Any]]:
        if not documents:
            return []

        texts = [searchable_text(doc) for doc in documents]
        vectorizer = TfidfVectorizer(tokenizer=tokenize, lowercase=False, token_pattern=None)
        try:
            matrix = vectorizer.fit_transform(texts)
        except ValueError:
            # Empty vocabulary
            return []
        scores = cosine_similarity(vectorizer.transform([query]), matrix)[0]

        ranked = []
        lowered = query.lower().strip()
        for document, text, score in zip(documents, texts, scores):
            score = float(score)
            if lowered and lowered in (document.original_name or "").lower():
                score = min(score + NAME_MATCH_BOOST, 1.0)
            if score <= 0 or score < settings.search_min_score:
                continue
            body = document.extracted_text or text
            ranked.append({
                "document_id": document.id,
                "original_name": document.original_name,
                "document_type": document.document_type,
                "case_id": document.case_id,
                "score": round(score, 4),
                "excerpt": build_excerpt(body, query),
                "highlights": build_highlights(body, query),
            })

        ranked.sort(key=lambda result: (-result["score"], result["document_id"]))
        return ranked

    def search(self, db: Session, user: User, query: str, filters: Optional[Dict[str, Any]] = None,
               limit: Optional[int] = None) -> Dict[str, Any]:
        start_time = time.time()
        filters = {key: value for key, value in (filters or {}).items() if value is not None}
        limit = limit or settings.search_default_limit

        results = self.rank(self._candidates(db, user.firm_id, filters), query)[:limit]

        db.add(SearchQuery(
            firm_id=user.firm_id,
            user_id=user.id,
            query=query,
            results_count=len(results),
            search_metadata={
                key: value.isoformat() if hasattr(value, "isoformat") else getattr(value, "value", value)
                for key, value in filters.items()
            },
            result_document_ids=[result["document_id"] for result in results],
        ))
        db.commit()

        search_time = time.time() - start_time
        logger.info(f"Search '{query}' by {user.username} returned {len(results)} results in {search_time:.3f}s")
        return {
            "query": query,
            "results": results,
            "total_results": len(results),
            "search_time": search_time,
        }

    def suggestions(self, db: Session, firm_id: int, prefix: str, limit: int = 10) -> List[str]:
        prefix = prefix.lower().strip()
        if not prefix:
            return []

        counts: Counter = Counter()
        for (text,) in db.query(SearchQuery.query).filter(SearchQuery.firm_id == firm_id).all():
            text = text.lower().strip()
            if text.startswith(prefix):
                counts[text] += 1

        for (metadata,) in db.query(Document.extracted_metadata).filter(
                Document.firm_id == firm_id, Document.is_latest.is_(True)).all():
            for keyword in (metadata or {}).get("keywords", []):
                if keyword.startswith(prefix):
                    counts[keyword] += 1

        return [text for text, _ in sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit]]

    def search_stats(self, db: Session, firm_id: int, top: int = 10) -> Dict[str, Any]:
        base = db.query(SearchQuery).filter(SearchQuery.firm_id == firm_id)
        rows = db.query(SearchQuery.query, func.count(SearchQuery.id)).filter(
            SearchQuery.firm_id == firm_id
        ).group_by(SearchQuery.query).order_by(func.count(SearchQuery.id).desc(), SearchQuery.query).limit(top).all()
        return {
            "total_searches": base.count(),
            "zero_result_searches": base.filter(SearchQuery.results_count == 0).count(),
            "top_queries": [{"query": text, "count": count} for text, count in rows],
        }


search_service = DocumentSearchService()
