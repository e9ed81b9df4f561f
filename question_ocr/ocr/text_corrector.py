"""
OCR Text Corrector

Rule-based cleanup of recognized exam text:
1. Whitespace and newline normalization
2. Quote, dash and ellipsis normalization
3. Word-internal glyph confusions and known misreadings
4. Segmentation of long merged words (wordsegment)
5. Question/option label spacing
6. Header/footer noise line removal
7. Math symbol substitution (only for mathematical content)

Passes are repeated until a round changes nothing, so correct(correct(x)) ==
correct(x). No pass deletes a question mark or an option marker, and lines
are never reordered.
"""

import logging
import re
import threading
from typing import Callable, Dict, Optional, Pattern, Tuple, Union

import wordsegment

from ..config import PipelineConfig
from ..models import CorrectedText

logger = logging.getLogger(__name__)

_TYPOGRAPHY = {
    "‘": "'", "’": "'", "‚": "'", "‛": "'", "′": "'",
    "“": '"', "”": '"', "„": '"', "‟": '"', "″": '"',
    "–": "-", "—": "-", "―": "-", "−": "-",
    "…": "...",
    "\u00a0": " ",
}

# Word-internal glyph confusions, applied only between lowercase letters
_GLYPH_CONFUSIONS = [
    (re.compile(r"(?<=[a-z])0(?=[a-z])"), "o"),
    (re.compile(r"(?<=[a-z])1(?=[a-z])"), "l"),
    (re.compile(r"(?<=[a-z])5(?=[a-z])"), "s"),
    (re.compile(r"(?<=[a-z])I(?=[a-z])"), "l"),
]

# Frequent whole-word misreadings (h read as li, t read as b, ...)
KNOWN_MISREADINGS: Dict[str, str] = {
    "tlie": "the",
    "tbe": "the",
    "tne": "the",
    "witli": "with",
    "wnat": "what",
    "wliat": "what",
    "tliat": "that",
    "wliich": "which",
    "wlien": "when",
    "wliere": "where",
    "wliy": "why",
    "liow": "how",
    "tliis": "this",
    "tlien": "then",
    "otlier": "other",
    "eacli": "each",
}

_MISREADING_RE = re.compile(
    r"\b(" + "|".join(sorted(KNOWN_MISREADINGS, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)

MAX_CORRECTION_ROUNDS = 4
MERGED_WORD_MIN_LENGTH = 25
_MERGED_WORD_RE = re.compile(r"\b[a-z]{%d,}\b" % MERGED_WORD_MIN_LENGTH)

_LABEL_RULES = [
    (re.compile(r"\bQ\s*(\d+)\s*\."), r"Q\1."),
    (re.compile(r"\b(Q\d+\.)(?=\S)"), r"\1 "),
    (re.compile(r"(^|\s)([A-Ea-e]\))(?=[^\s)])", re.MULTILINE), r"\1\2 "),
]

_NOISE_LINE_RE = re.compile(
    r"^(?:"
    r"page\s*\d+(?:\s*(?:of|/)\s*\d+)?"
    r"|-\s*\d+\s*-"
    r"|\d{1,3}"
    r"|(?:name|date|score|marks|roll\s*no\.?|time)\s*:.{0,30}"
    r"|header|footer"
    r"|continued\s+on\s+next\s+page\.?"
    r")$",
    re.IGNORECASE,
)
_OPTION_MARKER_RE = re.compile(r"(?:^|\s)\(?[A-Ea-e][).]")

_MATH_INDICATOR_RE = re.compile(
    r"\b(?:equation|formula|calculate|solve|derivative|integral|simplify|evaluate)\b"
    r"|\b(?:sin|cos|tan|log|sqrt)\b"
    r"|\d\s*[+\-*/=×÷^]\s*\d"
    r"|[=×÷√π∑∫]",
    re.IGNORECASE,
)

_GREEK = {
    "alpha": "α", "beta": "β", "gamma": "γ", "delta": "δ",
    "theta": "θ", "lambda": "λ", "sigma": "σ", "omega": "ω",
}

_MATH_RULES = [
    (re.compile(r"(?<=\d)[ \t]*[x*×][ \t]*(?=\d)"), " × "),
    (re.compile(r"\bsqrt\s*\("), "√("),
    (re.compile(r"\bpi\b"), "π"),
    (re.compile(r"\b(" + "|".join(_GREEK) + r")\b"), lambda m: _GREEK[m.group(1)]),
]

Replacement = Union[str, Callable[[re.Match], str]]


def _rewrite(pattern: Pattern, replacement: Replacement, text: str) -> Tuple[str, int]:
    """re.sub that counts only matches whose replacement differs from the match"""
    changes = 0

    def substitute(match):
        nonlocal changes
        new = replacement(match) if callable(replacement) else match.expand(replacement)
        if new != match.group(0):
            changes += 1
        return new

    return pattern.sub(substitute, text), changes


def _match_case(source: str, target: str) -> str:
    if source.isupper():
        return target.upper()
    if source[:1].isupper():
        return target[:1].upper() + target[1:]
    return target


def normalize_whitespace(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", " ")
    text = re.sub(r" {2,}", " ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def has_math_content(text: str) -> bool:
    """True when the text carries equation keywords or operator symbols"""
    return bool(_MATH_INDICATOR_RE.search(text))


class TextCorrector:
    """
    Applies the ordered correction passes.

    Example:
        corrector = TextCorrector()
        result = corrector.correct("Wnat is 2 x 3?", subject="math")
        result.text  # 'What is 2 × 3?'
    """

    _segmenter_lock = threading.Lock()
    _segmenter_loaded = False

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.math_subjects = {s.casefold() for s in self.config.math_subjects}

    def correct(self, text: str, subject: Optional[str] = None) -> CorrectedText:
        """
        Run every pass over `text`.

        Args:
            text: Fused transcript
            subject: Request subject; math subjects enable math substitution

        Returns:
            CorrectedText with the number of changes made
        """
        original = text or ""
        if not original.strip():
            return CorrectedText(text="", original=original)

        counts: Dict[str, int] = {}
        math_applied = False

        current = normalize_whitespace(original)
        # Later passes can expose work for earlier ones; stop once a round is a no-op
        for _ in range(MAX_CORRECTION_ROUNDS):
            before = current
            current, math_applied = self._apply_passes(current, subject, counts)
            if current == before:
                break

        total = sum(counts.values())
        if total:
            logger.info(f"Text correction applied {total} changes: {counts}")

        return CorrectedText(
            text=current,
            original=original,
            corrections=total,
            math_applied=math_applied,
        )

    def _apply_passes(self, text: str, subject: Optional[str], counts: Dict[str, int]) -> Tuple[str, bool]:
        """One round of every pass, adding change counts into `counts`"""
        passes = [("typography", self._typography), ("confusions", self._confusions)]
        if self.config.enable_word_segmentation:
            passes.append(("segmentation", self._segment_merged_words))
        passes += [("labels", self._label_spacing), ("noise_lines", self._remove_noise_lines)]

        for name, apply in passes:
            text, changes = apply(text)
            counts[name] = counts.get(name, 0) + changes

        math_applied = self._math_enabled(text, subject)
        if math_applied:
            text, changes = self._math_symbols(text)
            counts["math"] = counts.get("math", 0) + changes

        return normalize_whitespace(text), math_applied

    def _typography(self, text: str) -> Tuple[str, int]:
        changes = sum(text.count(ch) for ch in _TYPOGRAPHY)
        for source, target in _TYPOGRAPHY.items():
            text = text.replace(source, target)
        if changes:
            text = re.sub(r" {2,}", " ", text)
        return text, changes

    def _confusions(self, text: str) -> Tuple[str, int]:
        total = 0
        # Repeat until stable; one replacement can expose another
        while True:
            round_changes = 0
            for pattern, replacement in _GLYPH_CONFUSIONS:
                text, changes = _rewrite(pattern, replacement, text)
                round_changes += changes
            total += round_changes
            if not round_changes:
                break

        text, changes = _rewrite(
            _MISREADING_RE,
            lambda m: _match_case(m.group(1), KNOWN_MISREADINGS[m.group(1).lower()]),
            text,
        )
        return text, total + changes

    def _segment_merged_words(self, text: str) -> Tuple[str, int]:
        if not _MERGED_WORD_RE.search(text):
            return text, 0
        self._ensure_segmenter()

        def split(match):
            segments = wordsegment.segment(match.group(0))
            if len(segments) > 1:
                logger.debug(f"Segmented '{match.group(0)}' -> {segments}")
                return " ".join(segments)
            return match.group(0)

        return _rewrite(_MERGED_WORD_RE, split, text)

    @classmethod
    def _ensure_segmenter(cls) -> None:
        with cls._segmenter_lock:
            if not cls._segmenter_loaded:
                wordsegment.load()
                cls._segmenter_loaded = True
                logger.info("wordsegment dictionary loaded")

    def _label_spacing(self, text: str) -> Tuple[str, int]:
        total = 0
        # Spacing one label can expose the next, as in "a)b)c)"
        while True:
            round_changes = 0
            for pattern, replacement in _LABEL_RULES:
                text, changes = _rewrite(pattern, replacement, text)
                round_changes += changes
            total += round_changes
            if not round_changes:
                break
        return text, total

    def _remove_noise_lines(self, text: str) -> Tuple[str, int]:
        kept = []
        removed = 0
        for line in text.split("\n"):
            if self._is_noise_line(line):
                removed += 1
                logger.debug(f"Removed noise line: {line!r}")
                continue
            kept.append(line)
        return "\n".join(kept), removed

    @staticmethod
    def _is_noise_line(line: str) -> bool:
        stripped = line.strip()
        if not stripped or "?" in stripped or _OPTION_MARKER_RE.search(stripped):
            return False
        return bool(_NOISE_LINE_RE.match(stripped))

    def _math_enabled(self, text: str, subject: Optional[str]) -> bool:
        if subject and subject.strip().casefold() in self.math_subjects:
            return True
        return has_math_content(text)

    def _math_symbols(self, text: str) -> Tuple[str, int]:
        total = 0
        for pattern, replacement in _MATH_RULES:
            text, changes = _rewrite(pattern, replacement, text)
            total += changes
        return text, total


# Default corrector for module-level use
_corrector = None


def get_text_corrector() -> TextCorrector:
    """Get or create the default corrector instance"""
    global _corrector
    if _corrector is None:
        _corrector = TextCorrector()
    return _corrector


def correct(text: str, subject: Optional[str] = None) -> CorrectedText:
    """Correct `text` with the default configuration"""
    return get_text_corrector().correct(text, subject)
