# tests/test_search.py

from __future__ import annotations

from lawpractice.models.database import Document, SearchQuery
from lawpractice.models.enums import DocumentType
from lawpractice.services.search_service import build_excerpt, search_service
from lawpractice.services.text_analysis import (
    detect_language, extract_entities, tokenize, top_keywords, word_count
)

LEASE = "The tenant shall pay rent monthly. Late rent incurs a penalty of 5% per month."
EMPLOYMENT = "The employee receives a monthly salary and twenty days of annual leave."
LABOR_ZH = "劳动合同纠纷，用人单位拖欠工资三个月。"


def _transient(doc_id: int, name: str, text: str) -> Document:
    return Document(id=doc_id, original_name=name, extracted_text=text,
                    document_type=DocumentType.CONTRACT.value, case=None)


def _stored(db, user, name: str, text: str, is_latest: bool = True) -> Document:
    document = Document(
        firm_id=user.firm_id,
        filename=name,
        original_name=name,
        path=f"/tmp/{name}",
        size=len(text),
        file_format="txt",
        uploaded_by_id=user.id,
        extracted_text=text,
        is_latest=is_latest,
    )
    db.add(document)
    db.commit()
    return document


def test_tokenize_mixes_words_and_chinese_bigrams() -> None:
    assert tokenize("The Contract 合同纠纷") == ["合同", "同纠", "纠纷", "contract"]
    assert tokenize("的 a") == []


def test_language_and_word_count() -> None:
    assert detect_language("") == "unknown"
    assert detect_language(LABOR_ZH) == "zh"
    assert detect_language(LEASE) == "en"
    assert word_count("Hello world 合同") == 4


def test_top_keywords_by_frequency() -> None:
    assert top_keywords("rent deposit rent landlord rent deposit", limit=2) == ["rent", "deposit"]


def test_extract_entities() -> None:
    text = ("Contact zhang@lawfirm.cn or 13812345678. Signed 2024-03-15, 签订于2024年3月15日. "
            "ID 11010519491231002X.")
    entities = extract_entities(text)

    assert entities["emails"] == ["zhang@lawfirm.cn"]
    assert entities["phones"] == ["13812345678"]
    assert entities["dates"] == ["2024-03-15", "2024年3月15日"]
    assert entities["id_numbers"] == ["11010519491231002X"]


def test_rank_orders_by_relevance_and_drops_misses() -> None:
    documents = [
        _transient(1, "lease_agreement.txt", LEASE),
        _transient(2, "employment.txt", EMPLOYMENT),
        _transient(3, "notes.txt", "Meeting scheduled with opposing counsel."),
    ]

    results = search_service.rank(documents, "rent penalty")

    assert [r["document_id"] for r in results] == [1]
    assert 0 < results[0]["score"] <= 1
    assert results[0]["highlights"][0].startswith("The tenant shall pay rent")


def test_rank_handles_chinese_queries() -> None:
    documents = [_transient(1, "labor.txt", LABOR_ZH), _transient(2, "lease.txt", LEASE)]
    assert [r["document_id"] for r in search_service.rank(documents, "拖欠工资")] == [1]


def test_name_match_is_boosted() -> None:
    documents = [_transient(1, "memo.txt", "salary salary salary"), _transient(2, "salary.txt", "salary")]
    results = search_service.rank(documents, "salary")
    assert results[0]["document_id"] == 2


def test_excerpt_is_centered_on_match() -> None:
    text = "x" * 300 + " breach of contract " + "y" * 300
    excerpt = build_excerpt(text, "breach")
    assert excerpt.startswith("...") and excerpt.endswith("...")
    assert "breach of contract" in excerpt


def test_search_logs_queries_and_respects_tenancy(db, lawyer) -> None:
    from lawpractice.services.tenancy_service import tenancy_service

    _stored(db, lawyer, "lease.txt", LEASE)
    _, outsider = tenancy_service.register_firm(db, "Wang Law", "wang", "wang@wanglaw.cn", "password123")
    _stored(db, outsider, "other_lease.txt", LEASE)

    response = search_service.search(db, lawyer, "rent penalty")

    assert response["total_results"] == 1
    assert response["results"][0]["original_name"] == "lease.txt"
    logged = db.query(SearchQuery).filter(SearchQuery.user_id == lawyer.id).one()
    assert logged.results_count == 1

    search_service.search(db, lawyer, "rental deposit")
    assert search_service.suggestions(db, lawyer.firm_id, "ren") == ["rent penalty", "rental deposit"]

    stats = search_service.search_stats(db, lawyer.firm_id)
    assert stats["total_searches"] == 2
    assert stats["zero_result_searches"] == 1


def test_search_skips_superseded_versions(db, lawyer) -> None:
    _stored(db, lawyer, "lease_v1.txt", LEASE, is_latest=False)
    assert search_service.search(db, lawyer, "rent")["results"] == []
