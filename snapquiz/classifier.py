from __future__ import annotations

import logging
import re
import typing as t

from .models import ClassificationResult

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.4
MAX_CONFIDENCE = 0.95

MATHS_KEYWORDS = (
    "+", "−", "×", "÷", "=", "≠", "≈", "≤", "≥",
    "equation", "solve", "calculate", "formula", "theorem",
    "algebra", "geometry", "calculus", "trigonometry",
    "integer", "fraction", "decimal", "percentage",
    "variable", "coefficient", "exponent", "logarithm",
    "derivative", "integral", "function", "graph",
    "angle", "triangle", "circle", "radius", "diameter",
    "area", "volume", "perimeter", "hypotenuse",
    "sine", "cosine", "tangent", "matrix", "vector",
)

ENGLISH_KEYWORDS = (
    "noun", "verb", "adjective", "adverb", "pronoun",
    "preposition", "conjunction", "interjection",
    "subject", "predicate", "clause", "phrase",
    "tense", "passive", "active", "gerund",
    "metaphor", "simile", "alliteration", "personification",
    "character", "plot", "theme", "setting", "conflict",
    "protagonist", "antagonist", "narrator", "dialogue",
    "stanza", "verse", "rhyme", "imagery", "symbolism",
    "comma", "semicolon", "apostrophe", "quotation",
    "write a paragraph", "essay", "comprehension",
    "vocabulary", "spelling", "grammar",
)

SCIENCE_KEYWORDS = (
    "cell", "mitochondria", "photosynthesis", "dna", "rna",
    "organism", "species", "evolution", "ecosystem",
    "protein", "enzyme", "respiration", "chromosome",
    "atom", "molecule", "element", "compound", "ion",
    "reaction", "chemical", "periodic table", "electron",
    "oxidation", "reduction", "acid", "base", "ph",
    "solution", "solvent", "catalyst", "bonding",
    "force", "energy", "velocity", "acceleration", "momentum",
    "gravity", "friction", "mass", "weight", "newton",
    "electricity", "magnetism", "circuit", "voltage",
    "wavelength", "frequency", "light", "sound",
    "experiment", "hypothesis", "variable", "observation",
    "measurement", "data", "conclusion", "theory",
)

HISTORY_KEYWORDS = (
    "century", "bce", "ce", "ad", "bc", "era", "period",
    "ancient", "medieval", "renaissance", "industrial",
    "modern", "contemporary", "dynasty", "empire",
    "war", "battle", "revolution", "treaty", "colony",
    "independence", "constitution", "government", "democracy",
    "monarchy", "republic", "feudalism", "capitalism",
    "communism", "invasion", "conquest", "rebellion",
    "king", "queen", "emperor", "president", "general",
    "leader", "dictator", "prime minister",
    "world war", "civil war", "great depression",
    "reign", "ruled", "established", "founded", "declared",
)

# Iteration order is the tie-break order.
TOPIC_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("maths", MATHS_KEYWORDS),
    ("english", ENGLISH_KEYWORDS),
    ("science", SCIENCE_KEYWORDS),
    ("history", HISTORY_KEYWORDS),
)

# First hit wins within a topic.
SUBTOPIC_HINTS: dict[str, tuple[tuple[str, tuple[str, ...]], ...]] = {
    "maths": (
        ("algebra", ("algebra",)),
        ("geometry", ("geometry",)),
        ("calculus", ("calculus",)),
        ("trigonometry", ("trigonometry",)),
        ("statistics", ("statistics",)),
    ),
    "english": (
        ("grammar", ("grammar",)),
        ("literature", ("literature",)),
        ("vocabulary", ("vocabulary",)),
        ("comprehension", ("comprehension",)),
        ("writing", ("essay", "writing")),
    ),
    "science": (
        ("biology", ("biology", "cell", "organism")),
        ("chemistry", ("chemistry", "element", "reaction")),
        ("physics", ("physics", "force", "energy")),
    ),
    "history": (
        ("world_war", ("world war",)),
        ("war", ("war",)),
        ("ancient_history", ("ancient",)),
        ("modern_history", ("modern",)),
    ),
}

EQUATION_RE = re.compile(r"\d+\s*[+\-×÷=]\s*\d+")
DIGIT_RE = re.compile(r"\d+")


def _compile(keywords: t.Iterable[str]) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(rf"\b{re.escape(k)}\b", re.IGNORECASE) for k in keywords)


class ContentClassifier:
    """Cheap keyword scorer that picks a prompt template for homework text."""

    def __init__(self, *, threshold: float = DEFAULT_THRESHOLD) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {threshold}")
        self.threshold = threshold
        self._patterns = tuple((topic, _compile(words)) for topic, words in TOPIC_KEYWORDS)

    def scores(self, text: str) -> dict[str, float]:
        lowered = (text or "").lower()
        out: dict[str, float] = {}
        for topic, patterns in self._patterns:
            out[topic] = float(sum(len(p.findall(lowered)) for p in patterns))

        if EQUATION_RE.search(text or ""):
            out["maths"] *= 2.0
        elif DIGIT_RE.search(text or ""):
            out["maths"] *= 1.5
        return out

    def classify(self, text: str | None) -> ClassificationResult:
        scores = self.scores(text or "")

        best_topic, best_score = "", 0.0
        for topic, _ in TOPIC_KEYWORDS:
            if scores[topic] > best_score:
                best_topic, best_score = topic, scores[topic]

        if best_score <= 0:
            return ClassificationResult.FALLBACK

        total = sum(scores.values())
        confidence = min(best_score / total, MAX_CONFIDENCE)
        if confidence < self.threshold:
            logger.debug("Classification below threshold (%s=%.2f)", best_topic, confidence)
            return ClassificationResult.FALLBACK

        subtopic = detect_subtopic(best_topic, (text or "").lower())
        logger.info("Classified as %s (confidence %.2f, subtopic %s)", best_topic, confidence, subtopic)
        return ClassificationResult(topic=best_topic, confidence=confidence, subtopic=subtopic)


def detect_subtopic(topic: str, lowered_text: str) -> str | None:
    for subtopic, needles in SUBTOPIC_HINTS.get(topic, ()):
        if any(n in lowered_text for n in needles):
            return subtopic
    return None
