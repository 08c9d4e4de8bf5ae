import pytest

from tipac.config import Settings, DEFAULT_STATUS_RULES
from tipac.errors import InvalidInput
from tipac.helpers import round_half_up, is_valid_email, text_field


def test_database_url_is_required():
    with pytest.raises(RuntimeError):
        Settings.from_env({})


def test_from_env_defaults_and_overrides():
    s = Settings.from_env({
        "DATABASE_URL": "postgres://u:p@db/tipac",
        "MESSAGES_BACKEND": "PG",
        "SESSION_MAX_AGE": "600",
        "PESAPAL_IPN_ID": "  ",
        "BUYER_NAME_OVERRIDES_BATCH": "false",
    })
    assert s.messages_backend == "pg"
    assert s.session_max_age == 600
    assert s.pesapal_ipn_id is None
    assert s.pesapal_base_url == "https://pay.pesapal.com/v3"
    assert s.status_rules == DEFAULT_STATUS_RULES
    assert s.buyer_name_overrides_batch is False


@pytest.mark.parametrize("value,expected", [
    (25000.0, 25000), (2.5, 3), (1.49, 1), (0.5, 1),
])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


@pytest.mark.parametrize("email,ok", [
    ("a@b.co", True), ("a@b", False), ("", False), (None, False),
    ("two words@x.com", False),
])
def test_is_valid_email(email, ok):
    assert is_valid_email(email) is ok


def test_text_field():
    payload = {"name": "  Jane ", "empty": None, "count": 5, "tags": ["a"]}
    assert text_field(payload, "name") == "Jane"
    assert text_field(payload, "empty") == ""
    assert text_field(payload, "missing") == ""
    for key in ("count", "tags"):
        with pytest.raises(InvalidInput):
            text_field(payload, key)
