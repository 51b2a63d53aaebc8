from eol_checker.services.validators import sanitize_string, validate_initialize_job


def test_valid_payload():
    assert validate_initialize_job({'maker': 'SMC', 'model': 'CDQ2B20-10'}) == []


def test_missing_body():
    assert validate_initialize_job(None) == ['Request body is required']
    assert validate_initialize_job([]) == ['Request body is required']


def test_error_messages():
    errors = validate_initialize_job({'maker': '  ', 'model': 'M' * 201})
    assert errors == ['Model name too long (max 200 characters)', 'Maker cannot be empty']

    errors = validate_initialize_job({'maker': 5})
    assert errors == ['Model is required and must be a string', 'Maker is required and must be a string']


def test_sanitize_string():
    assert sanitize_string('  abc  ') == 'abc'
    assert sanitize_string('a\0b') == 'ab'
    assert sanitize_string('abcdef', max_length=3) == 'abc'
    assert sanitize_string(None) == ''
    assert sanitize_string(12) == ''
