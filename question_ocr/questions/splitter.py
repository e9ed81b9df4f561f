"""
Question block splitting strategies.

Each strategy is a named function returning a BlockSplit so it can be tested
on its own. Blocks keep their leading marker for audit; the extractor strips
numbering later.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Pattern, Tuple

logger = logging.getLogger(__name__)

NUMBERED_MARKER_RE = re.compile(r"^[ \t]*(\d{1,3})\.(?!\d)", re.MULTILINE)
Q_MARKER_RE = re.compile(
    r"^[ \t]*(?:question|que|q)[ \t]*\.?[ \t]*(\d+)[ \t]*[.:)\-]?",
    re.MULTILINE | re.IGNORECASE,
)
PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")


@dataclass(frozen=True)
class BlockSplit:
    """Blocks produced by one strategy, in document order"""
    strategy: str
    blocks: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.blocks)


def _keep(blocks, min_chars: int) -> Tuple[str, ...]:
    return tuple(b.strip() for b in blocks if len(b.strip()) >= min_chars)


def _split_at_markers(text: str, pattern: Pattern) -> List[str]:
    starts = [m.start() for m in pattern.finditer(text)]
    if not starts:
        return []
    bounds = starts + [len(text)]
    return [text[bounds[i]:bounds[i + 1]] for i in range(len(starts))]


def split_numbered(text: str, min_chars: int = 10) -> BlockSplit:
    """Blocks opened by `1.`, `2.`, ... at the start of a line"""
    return BlockSplit("numbered", _keep(_split_at_markers(text, NUMBERED_MARKER_RE), min_chars))


def split_q_markers(text: str, min_chars: int = 10) -> BlockSplit:
    """Blocks opened by `Q1`, `Q.1`, `Que 1`, `Question 1` at the start of a line"""
    return BlockSplit("q_markers", _keep(_split_at_markers(text, Q_MARKER_RE), min_chars))


def split_paragraphs(text: str, min_chars: int = 10) -> BlockSplit:
    """Blank-line separated blocks"""
    return BlockSplit("paragraphs", _keep(PARAGRAPH_BREAK_RE.split(text), min_chars))


# Preference order when strategies tie
STRATEGIES: List[Tuple[str, Callable[[str, int], BlockSplit]]] = [
    ("numbered", split_numbered),
    ("q_markers", split_q_markers),
    ("paragraphs", split_paragraphs),
]


def candidate_splits(text: str, min_chars: int = 10) -> List[BlockSplit]:
    """
    Every strategy that yields at least one block, in preference order.

    Falls back to the whole text as a single block when none does.
    """
    splits = []
    for name, strategy in STRATEGIES:
        split = strategy(text, min_chars)
        logger.debug(f"Split strategy '{name}' produced {len(split)} blocks")
        if split.blocks:
            splits.append(split)

    if not splits and text.strip():
        splits.append(BlockSplit("whole_text", (text.strip(),)))
    return splits
