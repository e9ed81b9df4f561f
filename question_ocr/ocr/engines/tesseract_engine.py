"""
Tesseract OCR Engine Implementation
CPU-only recognizer driven through pytesseract
"""

import logging
import time
from typing import Dict, List, Optional, Tuple

import numpy as np
from PIL import Image

from ..base import OCREngine, OCRResult, OCRWord, SegmentationProfile
from ...config import PipelineConfig

logger = logging.getLogger(__name__)

# Tokens Tesseract emits for rules, borders and speckles
GARBAGE_TOKENS = {'|', '||', '|||', '#', '##', '###', ']', '[', '}{'}


class TesseractEngine(OCREngine):
    """Tesseract OCR implementation (CPU-only, lightweight)"""

    def __init__(self, config: PipelineConfig, profile: SegmentationProfile):
        super().__init__(config, profile)
        self.tesseract_available = False
        self.version: Optional[str] = None

    def initialize(self) -> None:
        """Verify the Tesseract executable is reachable"""
        if self._initialized:
            logger.warning("Tesseract already initialized")
            return

        import pytesseract

        try:
            self.version = str(pytesseract.get_tesseract_version())
        except Exception as e:
            logger.error(f"Tesseract executable test failed: {e}")
            raise RuntimeError(
                f"Tesseract executable not working: {e}\n"
                "Install the tesseract binary and make sure it is on PATH."
            ) from e

        self.tesseract_available = True
        self._initialized = True
        logger.info(
            f"Tesseract {self.version} initialized "
            f"(profile={self.profile.name}, psm={self.profile.psm}, oem={self.config.oem})"
        )

    @property
    def tesseract_config(self) -> str:
        return f'--oem {self.config.oem} --psm {self.profile.psm}'

    def recognize(self, image: np.ndarray, timeout: Optional[float] = None) -> OCRResult:
        """
        Recognize a greyscale image with Tesseract.

        Args:
            image: Image as numpy array (uint8, single channel)
            timeout: Seconds before pytesseract kills the tesseract process

        Returns:
            OCRResult with line-structured text and word boxes
        """
        if not self._initialized:
            raise RuntimeError("OCR engine not initialized")

        import pytesseract

        start_time = time.time()

        try:
            pil_image = Image.fromarray(np.ascontiguousarray(image, dtype=np.uint8))
            lang = '+'.join(self.config.languages) if self.config.languages else 'eng'

            data = pytesseract.image_to_data(
                pil_image,
                lang=lang,
                config=self.tesseract_config,
                output_type=pytesseract.Output.DICT,
                timeout=timeout or 0,
            )

            text, words = self._assemble_text(data)
            confidence = (
                sum(w.confidence for w in words) / len(words) if words else 0.0
            )

            return OCRResult(
                text=text,
                confidence=confidence,
                words=words,
                processing_time=time.time() - start_time,
            )

        except RuntimeError as e:
            # pytesseract signals its own timeout as RuntimeError('Tesseract process timeout')
            timed_out = 'timeout' in str(e).lower()
            logger.warning(f"Tesseract call failed on {self.profile.name}: {e}")
            return OCRResult(
                text="",
                confidence=0.0,
                error=str(e),
                timed_out=timed_out,
                processing_time=time.time() - start_time,
            )
        except Exception as e:
            logger.error(f"Tesseract OCR processing failed: {e}", exc_info=True)
            return OCRResult(
                text="",
                confidence=0.0,
                error=str(e),
                processing_time=time.time() - start_time,
            )

    def _assemble_text(self, data: Dict[str, List]) -> Tuple[str, List[OCRWord]]:
        """
        Rebuild line structure from image_to_data output.

        Words are grouped by (block, paragraph, line); a new block starts a
        new paragraph (blank line). Rows with conf -1 are layout rows, not words.
        """
        lines: List[str] = []
        words: List[OCRWord] = []
        current_key = None
        current_block = None
        current_line: List[str] = []

        for i, raw_text in enumerate(data.get('text', [])):
            try:
                conf = float(data['conf'][i])
            except (TypeError, ValueError):
                continue
            token = (raw_text or '').strip()
            if conf < 0 or not token or token in GARBAGE_TOKENS:
                continue

            block = data['block_num'][i]
            key = (block, data['par_num'][i], data['line_num'][i])
            if key != current_key:
                if current_line:
                    lines.append(' '.join(current_line))
                if current_block is not None and block != current_block:
                    lines.append('')
                current_line = []
                current_key = key
                current_block = block

            current_line.append(token)
            words.append(OCRWord(
                text=token,
                confidence=max(0.0, min(1.0, conf / 100.0)),
                bbox=(
                    int(data['left'][i]),
                    int(data['top'][i]),
                    int(data['width'][i]),
                    int(data['height'][i]),
                ),
            ))

        if current_line:
            lines.append(' '.join(current_line))

        return '\n'.join(lines), words

    def cleanup(self) -> None:
        """Release Tesseract resources"""
        self._initialized = False
        logger.info(f"Tesseract engine cleaned up (profile={self.profile.name})")

    def is_available(self) -> bool:
        """Check if Tesseract engine is available and ready to process"""
        return self._initialized and self.tesseract_available
