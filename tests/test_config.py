import pytest

from bank_ledger.config import DEFAULT_API_URL, DEFAULT_SYNC_DAYS_BACK, Settings


def test_defaults_from_empty_env():
    s = Settings.from_env({})
    assert s.database_url is None
    assert s.api_url == DEFAULT_API_URL
    assert s.sync_days_back == DEFAULT_SYNC_DAYS_BACK
    assert not s.has_remote_credentials


def test_values_are_trimmed_and_parsed():
    s = Settings.from_env(
        {
            "DATABASE_URL": " sqlite:///x.db ",
            "GOCARDLESS_SECRET_ID": "id",
            "GOCARDLESS_SECRET_KEY": "key",
            "GOCARDLESS_API_URL": "https://sandbox.example/",
            "BANK_LEDGER_HTTP_TIMEOUT": "5",
            "BANK_LEDGER_SYNC_DAYS_BACK": "30",
        }
    )
    assert s.database_url == "sqlite:///x.db"
    assert s.api_url == "https://sandbox.example"
    assert s.http_timeout == 5.0
    assert s.sync_days_back == 30
    assert s.has_remote_credentials


@pytest.mark.parametrize(
    "key,value",
    [
        ("BANK_LEDGER_HTTP_TIMEOUT", "soon"),
        ("BANK_LEDGER_HTTP_TIMEOUT", "0"),
        ("BANK_LEDGER_SYNC_DAYS_BACK", "-1"),
        ("BANK_LEDGER_SYNC_DAYS_BACK", "1.5"),
    ],
)
def test_invalid_numbers_are_rejected(key, value):
    with pytest.raises(ValueError, match=key):
        Settings.from_env({key: value})


def test_reads_process_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///env.db")
    assert Settings.from_env().database_url == "sqlite:///env.db"
