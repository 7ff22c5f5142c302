import logging
import re
from typing import List

logger = logging.getLogger(__name__)

__all__ = ["DANGER_SIGN_PHRASES", "detect_danger_signs", "is_general_question", "normalize_text"]

# Phrases that always trigger the fixed escalation reply, matched on normalized text
DANGER_SIGN_PHRASES = (
    # Heavy bleeding
    "pendarahan hebat",
    "perdarahan hebat",
    "pendarahan banyak",
    "perdarahan banyak",
    "keluar darah banyak",
    "darah keluar banyak",
    "heavy bleeding",
    # Strong contractions before term
    "kontraksi hebat",
    "kontraksi kuat",
    "mulas hebat",
    "strong contractions",
    # Fetal movement
    "bayi tidak bergerak",
    "janin tidak bergerak",
    "gerakan janin berkurang",
    "gerakan bayi berkurang",
    "tidak ada gerakan janin",
    "tidak merasakan gerakan bayi",
    "no fetal movement",
    "baby stopped moving",
    # Membranes
    "ketuban pecah",
    "air ketuban keluar",
    "water broke",
    # Seizures
    "kejang",
    "seizure",
    # Pre-eclampsia signs
    "sakit kepala hebat",
    "pandangan kabur",
    "penglihatan kabur",
    "blurred vision",
    # Fever
    "demam tinggi",
    "high fever",
)

# General questions about danger signs are education, not a report of symptoms
GENERAL_QUESTION_PREFIXES = (
    "apa itu",
    "apa saja",
    "apa yang dimaksud",
    "apa arti",
    "what is",
    "what are",
)

# Any of these turns a general question back into a personal report
FIRST_PERSON_WORDS = frozenset({"saya", "aku", "sy", "gue", "i", "me", "my"})

_WHITESPACE = re.compile(r"\s+")
_WORD = re.compile(r"\w+")


def normalize_text(text: str) -> str:
    return _WHITESPACE.sub(" ", text.casefold()).strip()


def is_general_question(normalized: str) -> bool:
    """True for impersonal 'what is / what are' questions, e.g. 'apa saja tanda bahaya ...?'."""
    if not normalized.startswith(GENERAL_QUESTION_PREFIXES):
        return False
    return not FIRST_PERSON_WORDS.intersection(_WORD.findall(normalized))


def detect_danger_signs(text: str) -> List[str]:
    """
    Returns the danger-sign phrases found in the text, in list order.
    An empty list means the message can go to the language model.

    Matching is by substring, so it errs towards escalating. The one
    exception is an impersonal general question ("Apa saja tanda bahaya
    seperti demam tinggi?"), which goes to the model as an educational
    topic. Any first-person word keeps the message escalated.
    """
    if not text:
        return []
    normalized = normalize_text(text)
    matches = [phrase for phrase in DANGER_SIGN_PHRASES if phrase in normalized]
    if matches and is_general_question(normalized):
        logger.info(f"Danger-sign phrases {matches} appear in a general question, not escalating")
        return []
    if matches:
        logger.warning(f"Danger signs detected in user message: {matches}")
    return matches
