import logging
import re
import unicodedata
from dataclasses import dataclass

import cv2
import pytesseract

logger = logging.getLogger(__name__)

FALLBACK_TEXT = "Floorplan structure"

IMPERIAL = "IMPERIAL (Feet)"
METRIC = "METRIC (Meters)"
STANDARD = "Standard Unit"

FEET_PATTERN = re.compile(r"(\d+)'")
METRE_PATTERN = re.compile(r"(\d+)[mM]")


@dataclass
class OcrResult:
    text: str
    success: bool


def configure(tesseract_cmd=None):
    if tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd


def normalize(text):
    text = unicodedata.normalize('NFKD', text)
    return ''.join([c for c in text if c.isprintable() or c == '\n']).strip()


def extract_text(image, lang='eng'):
    """
    Read whatever text Tesseract can find on a floorplan image.

    Args:
        image: RGB image array
        lang (str): Tesseract language pack

    Returns:
        OcrResult: recognised text with line breaks flattened to ", ", or the
        fallback context when the OCR engine fails
    """
    try:
        gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        raw_text = pytesseract.image_to_string(gray, lang=lang)
    except (pytesseract.TesseractError, OSError) as e:
        logger.error(f"OCR Failed: {e}")
        return OcrResult(FALLBACK_TEXT, False)

    logger.info(f"OCR Result: {raw_text!r}")
    return OcrResult(normalize(raw_text).replace("\n", ", "), True)


def detect_unit(text):
    """Guess the drawing's unit system from dimension strings like 10'6", 12ft or 3.5m"""
    if FEET_PATTERN.search(text) or "ft" in text or "FEET" in text:
        unit = IMPERIAL
    elif METRE_PATTERN.search(text) or "mm" in text or "cm" in text:
        unit = METRIC
    else:
        unit = STANDARD
    logger.info(f"Detected Unit: {unit}")
    return unit


def area_label(unit):
    return "SQ.FT" if unit == IMPERIAL else "SQ.M"
