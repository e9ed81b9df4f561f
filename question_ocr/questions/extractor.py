"""
Question Structure Extractor

Scan -> Block-Split -> Classify -> Extract-Fields -> Validate -> Dedupe.

Every split strategy is extracted in full. A strategy whose question count
matches the caller's expected count wins; otherwise the most valid questions
wins. A block that fails validation is dropped and reported
as an ExtractionIssue; it never stops the remaining blocks.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from ..config import PipelineConfig
from ..errors import ExtractionError
from ..models import (
    Blank,
    ExtractionIssue,
    OptionChoice,
    Question,
    QuestionType,
)
from .similarity import jaccard, token_set
from .splitter import BlockSplit, STRATEGIES, candidate_splits

logger = logging.getLogger(__name__)

NUMBERING_RE = re.compile(
    r"^\s*(?:(?:question|que|q)\s*\.?\s*\d+\s*[.:)\-]?|\d{1,3}[.)](?!\d))\s*",
    re.IGNORECASE,
)
OPTION_LINE_RE = re.compile(r"^\(?([A-Ea-e])\s*(?:\)|\.(?=\s))\s*(\S.*)$")
BARE_OPTION_LINE_RE = re.compile(r"^([A-E])\s+(\S.*)$")
INLINE_OPTION_RE = re.compile(r"(?:^|\s)\(?[A-Ea-e]\)\s*\S")
INLINE_OPTION_SPLIT_RE = re.compile(r"(?<=\S)\s+(?=\(?[A-Ea-e]\)\s*\S)")
STEM_END_RE = re.compile(r"(?:[?:.]|_{3,}|\[\s*\]|\(\s*\))\s*$")
CONNECTIVES = {"and", "or", "nor", "but", "then", "vs", "versus", "&"}
BLANK_RE = re.compile(r"_{3,}|\[\s*\]|\(\s*\)|\.{3,}")
FIB_HINT_RE = re.compile(r"\bfill\s+in\s+the\s+blanks?\b", re.IGNORECASE)
ANSWER_LINE_RE = re.compile(
    r"^\s*(?:answer|ans|correct(?:\s+answer)?|solution)\s*[:.\-]\s*(.+?)\s*$",
    re.IGNORECASE,
)
ANSWER_LABEL_RE = re.compile(r"^\(?([A-Ea-e])\b")

LEAD_WORDS = {
    "what", "which", "who", "whom", "whose", "when", "where", "why", "how",
    "is", "are", "does", "do", "can", "explain", "describe", "define",
    "calculate", "find", "solve", "state", "list", "name", "compare",
    "discuss", "write", "prove", "show", "evaluate", "choose", "select",
    "identify", "complete", "fill",
}

BASE_CONFIDENCE = 0.5
SHORT_QUESTION_CHARS = 10
PREVIEW_CHARS = 80


@dataclass
class ExtractionReport:
    """Questions found, blocks rejected, and the split strategy used"""
    questions: List[Question] = field(default_factory=list)
    errors: List[ExtractionIssue] = field(default_factory=list)
    strategy: str = "none"


def single_space(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def strip_numbering(block: str) -> str:
    """Remove a leading `1.` / `Q1.` / `Question 1:` marker"""
    return NUMBERING_RE.sub("", block, count=1)


def explode_inline_options(line: str) -> List[str]:
    """
    Split `Stem? a) 3 b) 4` into the stem and one line per option.

    The line is left whole unless the markers open the line or follow a stem
    that ends in `?`, `:`, `.` or a blank, and no option is a bare connective.
    `Explain why (a) and (b) hold.` therefore stays one line.
    """
    if len(INLINE_OPTION_RE.findall(line)) < 2:
        return [line]
    parts = [part.strip() for part in INLINE_OPTION_SPLIT_RE.split(line) if part.strip()]

    first_is_option = OPTION_LINE_RE.match(parts[0]) is not None
    if not first_is_option and not STEM_END_RE.search(parts[0]):
        return [line]

    options = parts if first_is_option else parts[1:]
    for part in options:
        match = OPTION_LINE_RE.match(part)
        if match is None or match.group(2).strip(".,;").lower() in CONNECTIVES:
            return [line]
    return parts


def find_blanks(question_text: str) -> Tuple[Blank, ...]:
    return tuple(
        Blank(position=m.start(), placeholder=m.group(0), length=len(m.group(0)))
        for m in BLANK_RE.finditer(question_text)
    )


def question_confidence(
    question_type: QuestionType,
    question_text: str,
    option_count: int = 0,
    blank_count: int = 0,
    reclassified: bool = False,
) -> float:
    """
    Heuristic confidence that a block is a well-formed question.

    0.5 base; +0.15 for a question mark; +0.10 for an interrogative or
    imperative lead word; +0.15 for plausible option/blank counts (+0.05 when
    merely valid); -0.20 for question text under 10 characters; -0.05 when a
    fill-in-the-blank block had no blanks.
    """
    confidence = BASE_CONFIDENCE
    if "?" in question_text:
        confidence += 0.15

    words = question_text.split()
    if words and words[0].strip(".,:;!?\"'()").lower() in LEAD_WORDS:
        confidence += 0.10

    if question_type is QuestionType.MCQ:
        confidence += 0.15 if 3 <= option_count <= 5 else 0.05
    elif question_type is QuestionType.FIB:
        confidence += 0.15 if 1 <= blank_count <= 3 else 0.05

    if len(question_text.strip()) < SHORT_QUESTION_CHARS:
        confidence -= 0.20
    if reclassified:
        confidence -= 0.05

    return round(max(0.0, min(1.0, confidence)), 4)


def _match_option(line: str, allow_bare: bool) -> Optional[Tuple[str, str]]:
    match = OPTION_LINE_RE.match(line)
    if match is None and allow_bare:
        match = BARE_OPTION_LINE_RE.match(line)
    if match is None:
        return None
    return match.group(1).upper(), match.group(2).strip()


class QuestionExtractor:
    """
    Turns corrected text into validated Question records.

    Example:
        extractor = QuestionExtractor()
        report = extractor.extract("1. What is 2+2?\\na) 3\\nb) 4\\nc) 5\\nd) 6")
        report.questions[0].type  # QuestionType.MCQ
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()

    def extract(self, text: str, expected_question_count: Optional[int] = None) -> ExtractionReport:
        """
        Extract questions using the best split strategy.

        Args:
            text: Corrected transcript
            expected_question_count: Caller's hint; a split yielding exactly this many questions is preferred

        Returns:
            ExtractionReport
        """
        if not text or not text.strip():
            return ExtractionReport()

        splits = candidate_splits(text, self.config.min_block_chars)
        if not splits:
            return ExtractionReport()

        preference = {name: i for i, (name, _) in enumerate(STRATEGIES)}
        reports = [(split, self.extract_blocks(split)) for split in splits]

        def rank(item):
            split, report = item
            count = len(report.questions)
            matches_expected = expected_question_count is not None and count == expected_question_count
            return (
                0 if matches_expected else 1,
                -count,
                0 if len(split.blocks) >= 2 else 1,
                preference.get(split.strategy, len(preference)),
            )

        best_split, best = min(reports, key=rank)
        logger.info(
            f"Extracted {len(best.questions)} questions with '{best_split.strategy}' "
            f"({len(best_split.blocks)} blocks, {len(best.errors)} rejected)"
        )
        return best

    def extract_blocks(self, split: BlockSplit) -> ExtractionReport:
        """Classify, extract, validate and dedupe the blocks of one split"""
        questions: List[Question] = []
        errors: List[ExtractionIssue] = []

        for index, block in enumerate(split.blocks):
            try:
                questions.append(self.parse_block(block, block_id=len(questions) + 1, block_index=index))
            except ExtractionError as e:
                logger.warning(f"Block {index} rejected ({split.strategy}): {e.message}")
                errors.append(ExtractionIssue(
                    block_index=index,
                    reason=e.message,
                    block_preview=single_space(block)[:PREVIEW_CHARS],
                ))

        return ExtractionReport(
            questions=self.dedupe(questions),
            errors=errors,
            strategy=split.strategy,
        )

    def parse_block(self, block: str, block_id: int = 1, block_index: int = 0) -> Question:
        """
        Build a Question from one block.

        Raises:
            ExtractionError: If the block is an MCQ that fails validation or has
                no question text at all
        """
        raw = block.strip()
        body = strip_numbering(raw)

        lines: List[str] = []
        answer: Optional[str] = None
        for line in body.split("\n"):
            line = line.strip()
            if not line:
                continue
            answer_match = ANSWER_LINE_RE.match(line)
            if answer_match and answer is None:
                answer = answer_match.group(1).strip()
                continue
            lines.extend(explode_inline_options(line))

        option_lines = [
            i for i, line in enumerate(lines)
            if _match_option(line, allow_bare=i > 0) is not None
        ]

        if len(option_lines) >= 2:
            return self._build_mcq(lines, option_lines[0], raw, block_id, block_index, answer)

        question_text = single_space(" ".join(lines))
        if not question_text:
            raise ExtractionError("Block has no question text", block_index)

        if BLANK_RE.search(question_text) or FIB_HINT_RE.search(question_text):
            blanks = find_blanks(question_text)
            if blanks:
                return Question(
                    id=block_id,
                    type=QuestionType.FIB,
                    question_text=question_text,
                    confidence=question_confidence(QuestionType.FIB, question_text, blank_count=len(blanks)),
                    raw_source_text=raw,
                    blanks=blanks,
                    answer=_clean_answer(answer),
                )
            logger.debug(f"Fill-in-the-blank block without blanks, treating as descriptive: {question_text[:40]!r}")
            return Question(
                id=block_id,
                type=QuestionType.DESCRIPTIVE,
                question_text=question_text,
                confidence=question_confidence(QuestionType.DESCRIPTIVE, question_text, reclassified=True),
                raw_source_text=raw,
                answer=_clean_answer(answer),
            )

        return Question(
            id=block_id,
            type=QuestionType.DESCRIPTIVE,
            question_text=question_text,
            confidence=question_confidence(QuestionType.DESCRIPTIVE, question_text),
            raw_source_text=raw,
            answer=_clean_answer(answer),
        )

    def _build_mcq(
        self,
        lines: List[str],
        first_option: int,
        raw: str,
        block_id: int,
        block_index: int,
        answer: Optional[str],
    ) -> Question:
        question_text = single_space(" ".join(lines[:first_option]))

        options: List[List[str]] = []
        seen = set()
        current: Optional[List[str]] = None
        for i, line in enumerate(lines[first_option:], start=first_option):
            parsed = _match_option(line, allow_bare=i > 0)
            if parsed is not None:
                label, text = parsed
                if label in seen:
                    # First occurrence wins; drop the duplicate and its continuation
                    current = None
                    continue
                seen.add(label)
                current = [label, text]
                options.append(current)
            elif current is not None:
                current[1] = f"{current[1]} {line}"

        choices = tuple(
            OptionChoice(label=label, text=single_space(text))
            for label, text in options if single_space(text)
        )

        if not question_text:
            raise ExtractionError("Multiple-choice block has no question text", block_index)
        if not 2 <= len(choices) <= 5:
            raise ExtractionError(
                f"Multiple-choice block needs 2-5 distinct options, found {len(choices)}",
                block_index,
            )

        labels = {choice.label for choice in choices}
        answer_label = None
        if answer:
            label_match = ANSWER_LABEL_RE.match(answer)
            if label_match and label_match.group(1).upper() in labels:
                answer_label = label_match.group(1).upper()

        return Question(
            id=block_id,
            type=QuestionType.MCQ,
            question_text=question_text,
            confidence=question_confidence(QuestionType.MCQ, question_text, option_count=len(choices)),
            raw_source_text=raw,
            options=choices,
            answer=answer_label,
        )

    def dedupe(self, questions: List[Question]) -> List[Question]:
        """
        Drop near-duplicates, keeping the earliest.

        Each question is compared with every earlier one, dropped or not, so
        a chain A~B~C keeps only A.
        """
        seen_tokens = []
        kept: List[Question] = []
        for question in questions:
            tokens = token_set(question.question_text)
            duplicate = any(jaccard(tokens, earlier) > self.config.dedupe_threshold for earlier in seen_tokens)
            seen_tokens.append(tokens)
            if duplicate:
                logger.debug(f"Dropping duplicate question: {question.question_text[:60]!r}")
                continue
            kept.append(question)

        return [replace(q, id=i) for i, q in enumerate(kept, start=1)]


def _clean_answer(answer: Optional[str]) -> Optional[str]:
    if not answer:
        return None
    cleaned = answer.strip().rstrip(".").strip()
    return cleaned or None


def extract_questions(
    text: str,
    expected_question_count: Optional[int] = None,
    config: Optional[PipelineConfig] = None,
) -> ExtractionReport:
    """Convenience wrapper around QuestionExtractor.extract"""
    return QuestionExtractor(config).extract(text, expected_question_count)
