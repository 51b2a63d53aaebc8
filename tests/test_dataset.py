"""
Tests for the parts dataset service.
"""
from datetime import datetime, timezone

import pytest

from eol_checker.errors import ValidationError
from eol_checker.services import dataset

PARTS = [
    {'sap_number': '100', 'model': 'CDQ2B20-10', 'manufacturer': 'SMC', 'information_date': '2024-03-01T00:00:00'},
    {'sap_number': '200', 'model': 'E5CC', 'manufacturer': 'オムロン'},
    {'sap_number': '300', 'model': 'X1', 'manufacturer': 'Acme', 'auto_check': 'No'},
    {'sap_number': '400', 'model': 'LR-Z', 'manufacturer': 'KEYENCE', 'information_date': '2024-01-15T00:00:00'},
]


def test_replace_and_read():
    assert dataset.replace_dataset(PARTS) == 4

    rows = dataset.read_dataset()
    assert [r['sap_number'] for r in rows] == ['100', '200', '300', '400']
    assert rows[0]['information_date'] == '2024-03-01T00:00:00'
    assert rows[1]['auto_check'] == 'Yes'
    assert rows[2]['auto_check'] == 'No'


def test_replace_discards_previous_rows():
    dataset.replace_dataset(PARTS)
    dataset.replace_dataset(PARTS[:1])
    assert [r['sap_number'] for r in dataset.read_dataset()] == ['100']


@pytest.mark.parametrize('rows, message', [
    ([{'sap_number': '1', 'model': 'A'}], 'Row 0 is missing manufacturer'),
    ([{'sap_number': '1', 'model': 'A', 'manufacturer': 'B'}] * 2, 'Row 1 repeats SAP number 1'),
    (['not a row'], 'Row 0 is not an object'),
    ({'sap_number': '1'}, 'Data must be a list of parts'),
])
def test_invalid_rows_are_rejected(rows, message):
    dataset.replace_dataset(PARTS)
    with pytest.raises(ValidationError) as excinfo:
        dataset.replace_dataset(rows)
    assert message in excinfo.value.errors
    # Nothing replaced
    assert len(dataset.read_dataset()) == 4


def test_next_part_prefers_never_checked():
    dataset.replace_dataset(PARTS)
    assert dataset.find_next_part()['sap_number'] == '200'


def test_next_part_falls_back_to_oldest_check():
    dataset.replace_dataset([p for p in PARTS if p['sap_number'] != '200'])
    assert dataset.find_next_part()['sap_number'] == '400'


def test_next_part_skips_opted_out():
    dataset.replace_dataset([PARTS[2]])
    assert dataset.find_next_part() is None


def test_apply_result():
    dataset.replace_dataset(PARTS)
    checked_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    result = {
        'status': 'DISCONTINUED',
        'explanation': 'Result #1: 生産終了',
        'successor': {'status': 'FOUND', 'model': 'E5CC-800', 'explanation': 'Result #1 names it'},
    }

    part = dataset.apply_result('200', result, checked_at)

    assert part['status'] == 'DISCONTINUED'
    assert part['successor_model'] == 'E5CC-800'
    assert part['information_date'] == '2024-05-01T12:00:00'
    # Now checked, so the next pick moves on
    assert dataset.find_next_part()['sap_number'] == '400'


def test_apply_result_unknown_part():
    assert dataset.apply_result('missing', {'status': 'ACTIVE'}, datetime.now(timezone.utc)) is None
