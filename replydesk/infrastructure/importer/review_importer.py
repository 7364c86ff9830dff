"""
Review Importer - Universal Excel/CSV Review Import
====================================================

Parses review exports (.xlsx, .csv) and auto-detects the rating, text,
customer and date columns. Rows that can't become a review are reported
back instead of raising, so one bad row never blocks an import.
"""

import hashlib
import logging
import numbers
import re
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

logger = logging.getLogger(__name__)

# Common column name variations for auto-detection, most specific first
ID_PATTERNS = ['review_id', 'reviewid', 'id']
NAME_PATTERNS = ['customer_name', 'reviewer_name', 'reviewer', 'customer', 'author', 'client', 'name']
RATING_PATTERNS = ['rating', 'star_rating', 'stars', 'score']
TEXT_PATTERNS = ['review_text', 'comment', 'feedback', 'content', 'text', 'review']
DATE_PATTERNS = ['review_date', 'date', 'created_at', 'created', 'posted', 'time']

SUPPORTED_EXTENSIONS = (".xlsx", ".csv")


def read_frame(source, ext: str, sheet_name: Optional[str] = None) -> pd.DataFrame:
    """
    Read a CSV or .xlsx export (path or file-like) into a DataFrame.

    Raises:
        ValueError: unsupported extension, or the content can't be read
    """
    ext = ext.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise ValueError(f"Unsupported file format: {ext}. Use .xlsx or .csv")
    try:
        if ext == ".csv":
            return pd.read_csv(source)
        return pd.read_excel(source, sheet_name=sheet_name or 0, engine="openpyxl")
    except (zipfile.BadZipFile, InvalidFileException, KeyError, OSError, ValueError) as e:
        raise ValueError(f"Could not read {ext} file: {e}") from e


_NUMBER = re.compile(r"\d+(?:\.\d+)?")


@dataclass
class ImportResult:
    reviews: List[Dict] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    detected_columns: Dict[str, Optional[str]] = field(default_factory=dict)


def _is_blank(value) -> bool:
    if value is None:
        return True
    try:
        if pd.isna(value):
            return True
    except (TypeError, ValueError):
        pass
    return isinstance(value, str) and (not value.strip() or value.strip().lower() == 'nan')


def parse_rating(value) -> Optional[int]:
    """Read a 1-5 star rating from ``5``, ``4.0``, ``"5 stars"`` and friends."""
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        number = float(value)
    else:
        match = _NUMBER.search(str(value))
        if not match:
            return None
        number = float(match.group())
    if not number.is_integer() or not 1 <= number <= 5:
        return None
    return int(number)


class ReviewImporter:
    """
    Excel/CSV review importer with column auto-detection.

    Usage:
        importer = ReviewImporter()
        result = importer.parse("reviews.csv")
        db.bulk_add_reviews("biz-1", result.reviews)
    """

    def parse(self, file_path: str, sheet_name: Optional[str] = None) -> ImportResult:
        """
        Parse a review export.

        Raises:
            FileNotFoundError: file doesn't exist
            ValueError: unsupported or unreadable file, or no rating/text column found
        """
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        df = read_frame(path, path.suffix, sheet_name)

        return self.parse_frame(df, source=str(path))

    def parse_frame(self, df: pd.DataFrame, source: str = "<frame>") -> ImportResult:
        df = df.copy()
        df.columns = [str(c).strip().lower() for c in df.columns]

        detected = self._detect_columns(list(df.columns))
        logger.info(f"Detected columns: {detected}")

        if not detected['rating']:
            raise ValueError("Could not detect a 'Rating' column. Please include star ratings.")
        if not detected['text']:
            raise ValueError("Could not detect a 'Review' column. Please include the review text.")

        result = ImportResult(detected_columns=detected)

        for position, (_, row) in enumerate(df.iterrows(), start=2):
            raw_rating = row.get(detected['rating'])
            rating = parse_rating(raw_rating)
            if rating is None:
                result.errors.append(f"Row {position}: invalid rating {raw_rating!r}")
                continue

            text = row.get(detected['text'])
            text = '' if _is_blank(text) else str(text).strip()

            name = row.get(detected['name']) if detected['name'] else None
            name = 'Anonymous' if _is_blank(name) else str(name).strip()

            review_date = row.get(detected['date']) if detected['date'] else None
            if _is_blank(review_date):
                review_date = None
            elif isinstance(review_date, pd.Timestamp):
                review_date = review_date.to_pydatetime()
            else:
                review_date = str(review_date).strip()

            review_id = row.get(detected['id']) if detected['id'] else None
            if _is_blank(review_id):
                review_id = self._derive_id(name, text, review_date)
            elif isinstance(review_id, float) and review_id.is_integer():
                review_id = str(int(review_id))
            else:
                review_id = str(review_id).strip()

            result.reviews.append({
                'id': review_id,
                'rating': rating,
                'text': text,
                'customer_name': name,
                'review_date': review_date,
            })

        logger.info(f"Parsed {len(result.reviews)} reviews from {source} ({len(result.errors)} rejected)")
        return result

    def _detect_columns(self, columns: List[str]) -> Dict[str, Optional[str]]:
        detected: Dict[str, Optional[str]] = {}
        claimed = set()
        # Rating and text first: they are required and the loosest to match
        for key, patterns in (
            ('rating', RATING_PATTERNS),
            ('text', TEXT_PATTERNS),
            ('name', NAME_PATTERNS),
            ('date', DATE_PATTERNS),
            ('id', ID_PATTERNS),
        ):
            column = self._find_column([c for c in columns if c not in claimed], patterns)
            detected[key] = column
            if column:
                claimed.add(column)
        return detected

    def _find_column(self, columns: List[str], patterns: List[str]) -> Optional[str]:
        """Find column matching any of the patterns, exact names first."""
        for pattern in patterns:
            if pattern in columns:
                return pattern
        for pattern in patterns:
            for col in columns:
                if pattern in col:
                    return col
        return None

    def _derive_id(self, name: str, text: str, review_date) -> str:
        """Stable id for exports without one, so re-imports are skipped as duplicates."""
        digest = hashlib.sha1(f"{name}|{text}|{review_date}".encode("utf-8")).hexdigest()
        return f"imp-{digest[:16]}"
