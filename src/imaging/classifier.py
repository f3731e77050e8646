"""Barcode classification against the active pattern set.

Barcodes are evaluated in detection order; for each barcode the active
patterns are tried in ascending priority (ties broken by id). The first
accepted (barcode, pattern) pair decides the document, which biases
multi-label documents toward the first-printed label.

Dynamic patterns split the barcode on the separator into exactly as many
segments as the template has slots, and only accept a ``{documentType}``
segment naming an active document type (case-insensitive). Fixed-type
patterns skip the catalog check: the constant type is used and whatever
follows an optional ``<type><separator>`` prefix is the detail line id.
The prefix is mandatory when the template still has a ``{documentType}``
slot and optional when the template is just ``{detailLineId}``. A fixed
pattern whose template has no ``{detailLineId}`` slot never matches.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from src.models.barcode_pattern import BarcodePattern
from src.models.document_type import DocumentType

logger = logging.getLogger(__name__)

TOKEN_DOCUMENT_TYPE = "{documentType}"
TOKEN_DETAIL_LINE_ID = "{detailLineId}"
DEFAULT_SEPARATOR = "-"


@dataclass(frozen=True)
class PatternRule:
    id: int
    pattern_template: str
    separator: str
    fixed_document_type: Optional[str]
    bucket_id: int
    priority: int = 0

    @classmethod
    def from_model(cls, pattern: BarcodePattern) -> "PatternRule":
        return cls(
            id=pattern.id,
            pattern_template=pattern.pattern_template or "",
            separator=pattern.separator or DEFAULT_SEPARATOR,
            fixed_document_type=pattern.fixed_document_type or None,
            bucket_id=pattern.bucket_id,
            priority=pattern.priority or 0,
        )


@dataclass(frozen=True)
class DocumentTypeRef:
    id: int
    name: str


@dataclass(frozen=True)
class Classification:
    """Where a document belongs. ``document_type_id`` is None when a fixed type has no catalog row."""

    bucket_id: int
    document_type_name: str
    document_type_id: Optional[int]
    detail_line_id: str
    barcode: str
    pattern_id: int
    bill_number: Optional[str] = None  # never derived from a barcode


def template_error(template: str, separator: str, fixed_document_type: Optional[str] = None) -> Optional[str]:
    """Return why a pattern definition can never classify correctly, or None when it is usable.

    A fixed-type template is either ``{detailLineId}`` alone or
    ``{documentType}<sep>{detailLineId}``. A dynamic template needs both tokens.
    """
    if not separator:
        return "Separator must not be empty"
    slots = (template or "").split(separator)
    if fixed_document_type:
        if slots not in ([TOKEN_DETAIL_LINE_ID], [TOKEN_DOCUMENT_TYPE, TOKEN_DETAIL_LINE_ID]):
            return (f"Template for a fixed type must be {TOKEN_DETAIL_LINE_ID} or "
                    f"{TOKEN_DOCUMENT_TYPE}{separator}{TOKEN_DETAIL_LINE_ID}")
        return None
    if TOKEN_DOCUMENT_TYPE not in slots or TOKEN_DETAIL_LINE_ID not in slots:
        return f"Template needs {TOKEN_DOCUMENT_TYPE} and {TOKEN_DETAIL_LINE_ID} unless a fixed type is set"
    return None


def match_barcode(barcode: str, pattern: PatternRule,
                  document_types: Dict[str, DocumentTypeRef]) -> Optional[Classification]:
    """Try one pattern against one barcode. ``document_types`` is keyed by lower-cased name."""
    barcode = (barcode or "").strip()
    if not barcode:
        return None

    sep = pattern.separator or DEFAULT_SEPARATOR
    slots = pattern.pattern_template.split(sep)

    if pattern.fixed_document_type:
        if TOKEN_DETAIL_LINE_ID not in slots:
            return None
        detail_line_id = _fixed_detail(barcode, sep, slots, pattern.fixed_document_type)
        if not detail_line_id:
            return None
        known = document_types.get(pattern.fixed_document_type.lower())
        return Classification(
            bucket_id=pattern.bucket_id,
            document_type_name=known.name if known else pattern.fixed_document_type,
            document_type_id=known.id if known else None,
            detail_line_id=detail_line_id,
            barcode=barcode,
            pattern_id=pattern.id,
        )

    if TOKEN_DOCUMENT_TYPE not in slots or TOKEN_DETAIL_LINE_ID not in slots:
        return None

    parts = barcode.split(sep)
    if len(parts) != len(slots):
        return None

    for slot, part in zip(slots, parts):
        if slot not in (TOKEN_DOCUMENT_TYPE, TOKEN_DETAIL_LINE_ID) and slot.lower() != part.lower():
            return None

    document_type = parts[slots.index(TOKEN_DOCUMENT_TYPE)]
    detail_line_id = parts[slots.index(TOKEN_DETAIL_LINE_ID)]
    if not document_type or not detail_line_id:
        return None

    known = document_types.get(document_type.lower())
    if known is None:
        return None

    return Classification(
        bucket_id=pattern.bucket_id,
        document_type_name=known.name,
        document_type_id=known.id,
        detail_line_id=detail_line_id,
        barcode=barcode,
        pattern_id=pattern.id,
    )


def _fixed_detail(barcode: str, sep: str, slots: List[str], fixed_type: str) -> Optional[str]:
    prefix = f"{fixed_type}{sep}"
    if barcode.lower().startswith(prefix.lower()):
        return barcode[len(prefix):]
    if TOKEN_DOCUMENT_TYPE in slots:
        return None
    return barcode


class ClassificationEngine:
    """Resolves detected barcodes to a bucket, document type and detail line id."""

    def __init__(self, patterns: Iterable[PatternRule], document_types: Iterable[DocumentTypeRef]):
        self.patterns = sorted(patterns, key=lambda p: (p.priority, p.id))
        self.document_types = {dt.name.lower(): dt for dt in document_types}

    @classmethod
    def from_catalog(cls, db: Session) -> "ClassificationEngine":
        """Build an engine from the active patterns and document types."""
        patterns = (
            db.query(BarcodePattern)
            .filter(BarcodePattern.is_active == True)  # noqa: E712
            .order_by(BarcodePattern.priority, BarcodePattern.id)
            .all()
        )
        document_types = db.query(DocumentType).filter(DocumentType.is_active == True).all()  # noqa: E712
        return cls(
            [PatternRule.from_model(p) for p in patterns],
            [DocumentTypeRef(id=dt.id, name=dt.name) for dt in document_types],
        )

    def classify(self, barcodes: Sequence[str]) -> Optional[Classification]:
        """Return the first classification, or None when the document is unclassified."""
        for barcode in barcodes:
            for pattern in self.patterns:
                result = match_barcode(barcode, pattern, self.document_types)
                if result is not None:
                    logger.debug(f"Barcode '{barcode}' matched pattern {pattern.id}: "
                                 f"type={result.document_type_name}, detail={result.detail_line_id}")
                    return result
        return None
