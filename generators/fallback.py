# generators/fallback.py
"""
Local question synthesis, used when the remote generator is unavailable.

Questions are built from salient terms in the source text: the most frequent
non-stopword terms, and a sentence that mentions the chosen term.
"""
from __future__ import annotations

import random
import re
from collections import Counter
from typing import List, Optional, Sequence, Tuple

from adaptive_models import Choice, GeneratedQuestion

STOPWORDS = {
    "a", "about", "after", "all", "also", "an", "and", "any", "are", "as", "at", "be",
    "because", "been", "before", "being", "between", "both", "but", "by", "can", "could",
    "did", "do", "does", "each", "for", "from", "had", "has", "have", "he", "her", "his",
    "how", "however", "if", "in", "into", "is", "it", "its", "may", "more", "most", "much",
    "must", "no", "not", "of", "on", "one", "only", "or", "other", "our", "over",
    "same", "she", "should", "so", "some", "such", "than", "that", "the", "their", "them",
    "then", "there", "these", "they", "this", "those", "through", "to", "two", "under",
    "up", "use", "used", "using", "very", "was", "we", "were", "what", "when", "where",
    "which", "while", "who", "why", "will", "with", "would", "you", "your",
}

_WORD = re.compile(r"[A-Za-z][A-Za-z\-']{3,}")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")

# preferred shapes per difficulty, most preferred first
TYPE_PREFERENCE = {
    "easy": ["true_false", "multiple_choice", "identification", "enumeration"],
    "medium": ["multiple_choice", "identification", "true_false", "enumeration"],
    "hard": ["identification", "enumeration", "multiple_choice", "true_false"],
}

GENERIC_DISTRACTORS = ["process", "structure", "principle", "method"]


def salient_terms(text: str, limit: int = 12) -> List[str]:
    counts: Counter = Counter()
    first_seen = {}
    for i, m in enumerate(_WORD.finditer(text or "")):
        word = m.group(0).strip("-'").lower()
        if len(word) < 4 or word in STOPWORDS:
            continue
        counts[word] += 1
        first_seen.setdefault(word, i)
    ranked = sorted(counts, key=lambda w: (-counts[w], first_seen[w]))
    return ranked[:limit]


def sentences(text: str) -> List[str]:
    parts = [s.strip() for s in _SENTENCE_SPLIT.split((text or "").replace("\n", " "))]
    return [s for s in parts if len(s) >= 20]


def _sentence_with(term: str, pool: Sequence[str]) -> Optional[str]:
    pattern = re.compile(rf"\b{re.escape(term)}\b", re.IGNORECASE)
    for s in pool:
        if pattern.search(s):
            return s
    return None


def _blank(sentence: str, term: str) -> str:
    return re.sub(rf"\b{re.escape(term)}\b", "_____", sentence, count=1, flags=re.IGNORECASE)


def _pick_term(terms: Sequence[str], pool: Sequence[str], avoid: Sequence[str]) -> Tuple[Optional[str], Optional[str]]:
    avoided = " ".join(avoid).lower()
    for term in terms:
        sentence = _sentence_with(term, pool)
        if sentence and _blank(sentence, term).lower() not in avoided:
            return term, sentence
    for term in terms:
        sentence = _sentence_with(term, pool)
        if sentence:
            return term, sentence
    return None, None


def _choose_type(difficulty: str, allowed_types: Sequence[str], has_sentence: bool) -> str:
    order = TYPE_PREFERENCE.get(difficulty, TYPE_PREFERENCE["medium"])
    allowed = [t for t in order if t in allowed_types] or ["multiple_choice"]
    if not has_sentence:
        # without a sentence only a list question makes sense
        return "enumeration" if "enumeration" in allowed else allowed[0]
    return allowed[0]


def synthesize_question(
    source_text: str,
    difficulty: str,
    allowed_types: Sequence[str],
    avoid: Sequence[str] = (),
    rng: Optional[random.Random] = None,
) -> GeneratedQuestion:
    rng = rng or random.Random(f"{source_text[:200]}|{difficulty}|{len(avoid)}")
    terms = salient_terms(source_text)
    pool = sentences(source_text)
    term, sentence = _pick_term(terms, pool, avoid)
    qtype = _choose_type(difficulty, allowed_types, sentence is not None)
    explanation = "Generated locally from the source text while the question service was unavailable."

    if qtype == "enumeration" or term is None:
        items = terms[:3] or ["(no key terms found)"]
        return GeneratedQuestion(
            type="enumeration",
            stem=f"List {len(items)} key terms that appear most often in the material.",
            correct_answer=items,
            explanation=explanation,
            topic=items[0] if terms else None,
            difficulty=difficulty,
            origin="fallback",
        )

    clozed = _blank(sentence, term)

    if qtype == "identification":
        return GeneratedQuestion(
            type="identification",
            stem=f"Fill in the blank: {clozed}",
            correct_answer=term,
            explanation=explanation,
            topic=term,
            difficulty=difficulty,
            origin="fallback",
        )

    distractors = [t for t in terms if t != term][:3]
    for extra in GENERIC_DISTRACTORS:
        if len(distractors) >= 3:
            break
        if extra != term and extra not in distractors:
            distractors.append(extra)

    if qtype == "true_false":
        use_true = rng.random() < 0.5
        shown = term if use_true else distractors[0]
        statement = clozed.replace("_____", shown, 1)
        return GeneratedQuestion(
            type="true_false",
            stem=f"True or false: {statement}",
            choices=[Choice(id="a", text="True"), Choice(id="b", text="False")],
            correct_answer=["a"] if use_true else ["b"],
            explanation=explanation,
            topic=term,
            difficulty=difficulty,
            origin="fallback",
        )

    options = [term] + distractors[:3]
    rng.shuffle(options)
    ids = ["a", "b", "c", "d"]
    return GeneratedQuestion(
        type="multiple_choice",
        stem=f"Which term completes the statement? {clozed}",
        choices=[Choice(id=ids[i], text=t) for i, t in enumerate(options)],
        correct_answer=[ids[options.index(term)]],
        explanation=explanation,
        topic=term,
        difficulty=difficulty,
        origin="fallback",
    )
