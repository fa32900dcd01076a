"""Message moderation: PII sanitising and the risk classifier.

The classifier is an external collaborator with the contract
``classify(text) -> {"risk": none|low|medium|high, "message": str|None}``.
Two backends ship: ``presidio`` (Microsoft Presidio analyzer plus the regex
patterns) and ``regex`` (patterns only). ``MODERATION_BACKEND`` picks one.
Moderation is advisory: it never blocks delivery.
"""
import logging
import re

from flask import current_app

logger = logging.getLogger(__name__)

RISK_LEVELS = ("none", "low", "medium", "high")

WARNING_MESSAGE = (
    "We detected possible attempts to share contact or personal information. "
    "Continued violations may lead to account suspension."
)

# ---------------------------------------
# 1. TEXT NORMALIZATION (obfuscation fixing)
# ---------------------------------------

WORDS_TO_NUMS = {
    "zero": "0", "one": "1", "two": "2", "three": "3",
    "four": "4", "five": "5", "six": "6",
    "seven": "7", "eight": "8", "nine": "9"
}

OBFUSCATIONS = [
    (r"\s*[\(\[\{]\s*at\s*[\)\]\}]\s*", "@"),
    (r"\s+at\s+(?=[a-z0-9-]+(?:\.[a-z]{2,}\b|\s*(?:dot|[\(\[]\s*dot\s*[\)\]])\s*[a-z]{2,}\b))", "@"),
    (r"\s*[\(\[\{]\s*dot\s*[\)\]\}]\s*", "."),
    (r"(?<=\w)\s+dot\s+(?=[a-z]{2,}\b)", "."),
]


def normalize_text(t):
    if not t:
        return t

    for pat, repl in OBFUSCATIONS:
        t = re.sub(pat, repl, t, flags=re.IGNORECASE)

    # Remove brackets wedged inside words: muteti[]gmail
    t = re.sub(r"(?<=\w)[\[\]\(\)\{\}](?=\w)", "", t)

    for word, digit in WORDS_TO_NUMS.items():
        t = re.sub(rf"\b{word}\b", digit, t, flags=re.IGNORECASE)

    # Remove separators between phone digits (spaces, commas, periods)
    t = re.sub(r"(?<=\d)[ ,.-]+(?=\d)", "", t)

    return t


# ---------------------------------------
# 2. REGEX PII DETECTION
# ---------------------------------------

PII_REGEX_PATTERNS = [
    # Full emails
    r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}",

    # International phones
    r"\+?\d{9,15}",

    # Broken emails (muteti@gmail without .com)
    r"[A-Za-z0-9._%+-]+@[A-Za-z]+",

    # Separated digits sequences 3-3-4
    r"\b\d{3}[-\s.]?\d{3}[-\s.]?\d{3,4}\b",
]

OFF_PLATFORM_KEYWORDS = [
    "whatsapp", "telegram", "skype", "signal me", "email me", "call me",
    "text me", "my number", "phone number", "pay outside", "paypal",
]

REDACTED = "[REDACTED]"


def regex_mask(t):
    for pat in PII_REGEX_PATTERNS:
        t = re.sub(pat, REDACTED, t, flags=re.IGNORECASE)
    return t


def regex_hits(t):
    return [p for p in PII_REGEX_PATTERNS if re.search(p, t, re.IGNORECASE)]


def keyword_hits(t):
    lowered = (t or "").lower()
    return [k for k in OFF_PLATFORM_KEYWORDS if k in lowered]


def score(total_hits, keywords):
    if total_hits >= 2:
        return "high"
    if total_hits >= 1:
        return "medium"
    if keywords:
        return "low"
    return "none"


def risk_at_least(risk, floor):
    return RISK_LEVELS.index(risk) >= RISK_LEVELS.index(floor)


# ---------------------------------------
# 3. CLASSIFIER BACKENDS
# ---------------------------------------

class RegexClassifier:
    name = "regex"

    def mask(self, text):
        return regex_mask(text)

    def analyze(self, text):
        norm = normalize_text(text or "")
        hits = regex_hits(norm)
        redacted_count = norm.count(REDACTED)
        keywords = keyword_hits(norm)
        risk = score(len(hits) + redacted_count, keywords)
        return {
            "risk": risk,
            "regex_hits": hits,
            "redacted_count": redacted_count,
            "keywords": keywords,
        }

    def classify(self, text):
        analysis = self.analyze(text)
        risk = analysis["risk"]
        return {
            "risk": risk,
            "message": WARNING_MESSAGE if risk_at_least(risk, "medium") else None,
        }


class PresidioClassifier(RegexClassifier):
    name = "presidio"

    ENTITIES = ["EMAIL_ADDRESS", "PHONE_NUMBER", "URL", "CREDIT_CARD", "IBAN_CODE"]

    def __init__(self):
        self._analyzer = None

    @property
    def analyzer(self):
        if self._analyzer is None:
            from presidio_analyzer import AnalyzerEngine
            self._analyzer = AnalyzerEngine()
        return self._analyzer

    def _results(self, text):
        return self.analyzer.analyze(text=text, entities=self.ENTITIES, language="en")

    def mask(self, text):
        for r in sorted(self._results(text), key=lambda x: x.start, reverse=True):
            text = text[:r.start] + REDACTED + text[r.end:]
        return regex_mask(text)

    def analyze(self, text):
        analysis = super().analyze(text)
        presidio_hits = self._results(normalize_text(text or ""))
        total = len(presidio_hits) + len(analysis["regex_hits"]) + analysis["redacted_count"]
        analysis["presidio_hits"] = presidio_hits
        analysis["risk"] = score(total, analysis["keywords"])
        return analysis


BACKENDS = {
    "regex": RegexClassifier,
    "presidio": PresidioClassifier,
}


def get_classifier():
    """Return the app's classifier, building it on first use."""
    ext = current_app.extensions
    if "moderation_classifier" not in ext:
        backend = current_app.config.get("MODERATION_BACKEND", "presidio")
        try:
            cls = BACKENDS[backend]
        except KeyError:
            raise RuntimeError(f"Unknown MODERATION_BACKEND: {backend}")
        ext["moderation_classifier"] = cls()
        logger.info("Moderation backend: %s", backend)
    return ext["moderation_classifier"]


# ---------------------------------------
# 4. MAIN SANITIZER PIPELINE (call everywhere)
# ---------------------------------------

def sanitize_message(content):
    """Redact contact details from message text before it is stored."""
    if not content:
        return content
    return get_classifier().mask(content)


def classify(text):
    return get_classifier().classify(text)
