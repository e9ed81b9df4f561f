"""Question block splitting, classification and dedupe"""

from .extractor import ExtractionReport, QuestionExtractor, extract_questions
from .quality import assess_quality, readability_score
from .similarity import jaccard, token_set
from .splitter import BlockSplit, split_numbered, split_paragraphs, split_q_markers

__all__ = [
    'BlockSplit',
    'ExtractionReport',
    'QuestionExtractor',
    'assess_quality',
    'extract_questions',
    'jaccard',
    'readability_score',
    'split_numbered',
    'split_paragraphs',
    'split_q_markers',
    'token_set',
]
