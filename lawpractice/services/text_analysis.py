import re
from collections import Counter
from typing import Dict, List

CJK_PATTERN = re.compile(r"[一-鿿]")
CJK_RUN = re.compile(r"[一-鿿]+")
WORD_PATTERN = re.compile(r"[a-z0-9]+")
LATIN_WORD = re.compile(r"[A-Za-z0-9]+")

ENGLISH_STOP_WORDS = {
    "a", "an", "and", "are", "as", "at", "be", "been", "but", "by", "for", "from", "has", "have",
    "he", "her", "his", "in", "into", "is", "it", "its", "of", "on", "or", "our", "she", "that",
    "the", "their", "them", "there", "these", "they", "this", "to", "was", "we", "were", "which",
    "will", "with", "you", "your", "shall", "may", "any", "all", "not", "no", "such", "than",
}

CHINESE_STOP_WORDS = {
    "的", "了", "和", "是", "在", "我", "有", "他", "这", "中", "为", "之", "与", "以", "及",
    "等", "其", "或", "被", "由", "对", "将", "并", "于", "也", "而", "就", "但", "都",
    "我们", "他们", "以及", "或者", "但是", "因为", "所以", "如果", "可以", "没有", "进行",
}

STOP_WORDS = ENGLISH_STOP_WORDS | CHINESE_STOP_WORDS

ENTITY_PATTERNS = {
    "emails": re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"),
    "phones": re.compile(r"(?<!\d)1[3-9]\d{9}(?!\d)"),
    "dates": re.compile(r"\d{4}[-/.年]\d{1,2}[-/.月]\d{1,2}日?"),
    "id_numbers": re.compile(r"(?<![\dXx])\d{17}[\dXx](?![\dXx])"),
}


def tokenize(text: str) -> List[str]:
    """Lowercased word tokens; runs of Chinese characters become bigrams."""
    text = (text or "").lower()
    tokens = []
    for run in CJK_RUN.findall(text):
        if len(run) == 1:
            continue
        tokens.extend(run[i:i + 2] for i in range(len(run) - 1))
    tokens.extend(WORD_PATTERN.findall(text))
    return [token for token in tokens if len(token) >= 2 and token not in STOP_WORDS]


def detect_language(text: str) -> str:
    characters = [c for c in text or "" if not c.isspace()]
    if not characters:
        return "unknown"
    cjk = sum(1 for c in characters if CJK_PATTERN.match(c))
    return "zh" if cjk / len(characters) > 0.3 else "en"


def word_count(text: str) -> int:
    # Each Chinese character counts as one word
    return len(LATIN_WORD.findall(text or "")) + len(CJK_PATTERN.findall(text or ""))


def top_keywords(text: str, limit: int = 10) -> List[str]:
    counts = Counter(tokenize(text))
    return [token for token, _ in sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit]]


def extract_entities(text: str) -> Dict[str, List[str]]:
    entities = {}
    for name, pattern in ENTITY_PATTERNS.items():
        seen = []
        for match in pattern.findall(text or ""):
            if match not in seen:
                seen.append(match)
        entities[name] = seen
    return entities
