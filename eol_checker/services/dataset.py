"""
Dataset Service - the tracked parts table (read, replace, pick next, apply results)
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from eol_checker.database.db_config import get_db_session
from eol_checker.database.models import Part
from eol_checker.errors import ValidationError

logger = logging.getLogger(__name__)

PART_FIELDS = (
    'sap_number', 'legacy_number', 'designation', 'model', 'manufacturer',
    'status', 'status_comment', 'successor_model', 'successor_comment',
    'successor_sap_number', 'stock', 'information_date', 'auto_check',
)
REQUIRED_FIELDS = ('sap_number', 'model', 'manufacturer')


def _part_to_dict(part: Part) -> Dict[str, Any]:
    data = {name: getattr(part, name) for name in PART_FIELDS}
    data['id'] = part.id
    if part.information_date:
        data['information_date'] = part.information_date.isoformat()
    return data


def _parse_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00')).replace(tzinfo=None)
    except ValueError:
        raise ValidationError([f"Invalid information_date: {value}"])


def read_dataset() -> List[Dict[str, Any]]:
    """Return every part, ordered by id."""
    session = get_db_session()
    try:
        return [_part_to_dict(p) for p in session.query(Part).order_by(Part.id).all()]
    finally:
        session.close()


def replace_dataset(rows: List[Dict[str, Any]]) -> int:
    """
    Replace the whole dataset

    Args:
        rows: Part dictionaries keyed by PART_FIELDS

    Returns:
        Number of parts saved

    Raises:
        ValidationError: when a row misses a required field or repeats a SAP number
    """
    if not isinstance(rows, list):
        raise ValidationError(['Data must be a list of parts'])

    errors = []
    seen = set()
    for i, row in enumerate(rows):
        if not isinstance(row, dict):
            errors.append(f"Row {i} is not an object")
            continue
        missing = [f for f in REQUIRED_FIELDS if not str(row.get(f) or '').strip()]
        if missing:
            errors.append(f"Row {i} is missing {', '.join(missing)}")
        sap = str(row.get('sap_number') or '').strip()
        if sap and sap in seen:
            errors.append(f"Row {i} repeats SAP number {sap}")
        seen.add(sap)
    if errors:
        raise ValidationError(errors)

    session = get_db_session()
    try:
        session.query(Part).delete()
        for row in rows:
            values = {name: row.get(name) for name in PART_FIELDS if name in row}
            values['information_date'] = _parse_date(row.get('information_date'))
            values['auto_check'] = row.get('auto_check') or 'Yes'
            session.add(Part(**values))
        session.commit()
        logger.info(f"Dataset replaced with {len(rows)} parts")
        return len(rows)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def find_next_part() -> Optional[Dict[str, Any]]:
    """
    Next part for the auto-check: never-checked parts first, then the
    least recently checked one. Parts with auto_check != 'Yes' are skipped.
    """
    session = get_db_session()
    try:
        query = session.query(Part).filter(Part.auto_check == 'Yes')
        part = query.filter(Part.information_date.is_(None)).order_by(Part.id).first()
        if part is None:
            part = query.order_by(Part.information_date.asc(), Part.id).first()
        return _part_to_dict(part) if part else None
    finally:
        session.close()


def apply_result(sap_number: str, result: Dict[str, Any], checked_at: datetime) -> Optional[Dict[str, Any]]:
    """Write a classification result onto a part. Returns the updated part or None when missing."""
    session = get_db_session()
    try:
        part = session.query(Part).filter(Part.sap_number == sap_number).first()
        if part is None:
            logger.warning(f"Part {sap_number} not found, result not saved")
            return None

        successor = result.get('successor') or {}
        part.status = result.get('status')
        part.status_comment = result.get('explanation')
        part.successor_model = successor.get('model') or ''
        part.successor_comment = successor.get('explanation') or ''
        part.information_date = checked_at.replace(tzinfo=None)
        session.commit()
        logger.info(f"Updated part {sap_number}: {part.status}")
        return _part_to_dict(part)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
