from datetime import datetime

import pytest

import yoga_link
from yoga_link import (
    SUNDAY_URL,
    TIMEZONE,
    DeliveryFailure,
    NetworkFailure,
    append_run_log,
    main,
)

MONDAY = datetime(2026, 10, 19, 5, 30, 15, tzinfo=TIMEZONE)
SUNDAY = datetime(2026, 10, 18, 5, 30, 15, tzinfo=TIMEZONE)
PAGE   = '<script>var d = {"watchEndpoint":{"videoId":"abc123"}};</script>'
LINK   = "https://www.youtube.com/watch?v=abc123"

# --- Run log ---

def test_append_run_log(tmp_path):
    log_file = tmp_path / "logs.txt"
    assert append_run_log(str(log_file), MONDAY) == "2026-10-19 05:30:15"
    append_run_log(str(log_file), SUNDAY)
    assert log_file.read_text() == "2026-10-19 05:30:15\n2026-10-18 05:30:15\n"


def test_append_run_log_io_error(tmp_path, caplog):
    missing_dir = tmp_path / "nope" / "logs.txt"
    assert append_run_log(str(missing_dir), MONDAY) is None
    assert "Could not append to run log" in caplog.text

# --- Entry point ---

@pytest.fixture
def run_env(monkeypatch, tmp_path):
    """Delivery-ready environment with the run log under tmp_path."""
    log_file = tmp_path / "logs.txt"
    monkeypatch.setenv("BASE_URL", "https://example.com/live")
    monkeypatch.setenv("EMAIL_RECIPIENTS", "a@example.com,b@example.com")
    monkeypatch.setenv("EMAIL_USER", "sender@example.com")
    monkeypatch.setenv("API_KEY", "re_test")
    monkeypatch.setenv("RUN_LOG_FILE", str(log_file))
    for name in ("EMAIL_TRANSPORT", "EMAIL_SENDER_NAME", "SMTP_HOST", "SMTP_PORT"):
        monkeypatch.delenv(name, raising=False)
    return log_file


@pytest.fixture
def at(mocker):
    """Pin the clock used by main()."""
    def _at(now):
        mock_dt = mocker.patch("yoga_link.datetime")
        mock_dt.now.return_value = now
        return mock_dt
    return _at


def test_main_sends_extracted_link(mocker, run_env, at):
    at(MONDAY)
    mocker.patch("yoga_link.fetch_page", return_value=PAGE)
    mock_send = mocker.patch("yoga_link.send_email")

    main([])

    config, subject, html_body, plain_body = mock_send.call_args.args
    assert config.recipients == ("a@example.com", "b@example.com")
    assert subject == "Monday YOGA Link"
    assert LINK in html_body
    assert f"Link: {LINK}" in plain_body
    assert run_env.read_text() == "2026-10-19 05:30:15\n"


def test_main_sunday_override(mocker, run_env, at):
    at(SUNDAY)
    mocker.patch("yoga_link.fetch_page", return_value=PAGE)
    mock_send = mocker.patch("yoga_link.send_email")

    main([])

    _, subject, html_body, plain_body = mock_send.call_args.args
    assert subject == "Sunday YOGA Link"
    assert f"Link: {SUNDAY_URL}" in plain_body
    assert LINK not in html_body


def test_main_missing_config_aborts_before_fetch(mocker, monkeypatch, run_env, caplog):
    monkeypatch.delenv("API_KEY")
    mock_fetch = mocker.patch("yoga_link.fetch_page")

    with pytest.raises(SystemExit) as excinfo:
        main([])

    assert excinfo.value.code == 1
    mock_fetch.assert_not_called()
    assert "API_KEY" in caplog.text
    assert not run_env.exists()


def test_main_no_link_skips_email(mocker, run_env, at, caplog):
    at(MONDAY)
    mocker.patch("yoga_link.fetch_page", return_value="<html>nothing</html>")
    mock_send = mocker.patch("yoga_link.send_email")

    with pytest.raises(SystemExit) as excinfo:
        main([])

    assert excinfo.value.code == 1
    mock_send.assert_not_called()
    assert "skipping email" in caplog.text
    assert run_env.read_text() == "2026-10-19 05:30:15\n"


def test_main_network_failure_still_sends_on_sunday(mocker, run_env, at):
    at(SUNDAY)
    mocker.patch("yoga_link.fetch_page", side_effect=NetworkFailure("GET https... failed"))
    mock_send = mocker.patch("yoga_link.send_email")

    with pytest.raises(SystemExit) as excinfo:
        main([])

    assert excinfo.value.code == 1
    assert f"Link: {SUNDAY_URL}" in mock_send.call_args.args[3]
    assert run_env.exists()


def test_main_delivery_failure(mocker, run_env, at, caplog):
    at(MONDAY)
    mocker.patch("yoga_link.fetch_page", return_value=PAGE)
    mocker.patch("yoga_link.send_email", side_effect=DeliveryFailure("Resend returned status 500"))

    with pytest.raises(SystemExit) as excinfo:
        main([])

    assert excinfo.value.code == 1
    assert "Email delivery failed: Resend returned status 500" in caplog.text
    assert run_env.read_text() == "2026-10-19 05:30:15\n"


def test_main_dry_run_prints_instead_of_sending(mocker, monkeypatch, run_env, at, capsys):
    for name in ("EMAIL_RECIPIENTS", "EMAIL_USER", "API_KEY"):
        monkeypatch.delenv(name)
    at(MONDAY)
    mocker.patch("yoga_link.fetch_page", return_value=PAGE)
    mock_send = mocker.patch("yoga_link.send_email")

    main(["--dry-run"])

    mock_send.assert_not_called()
    out = capsys.readouterr().out
    assert "DRY RUN — Subject: Monday YOGA Link" in out
    assert f"Link: {LINK}" in out


def test_main_uses_ist_clock(mocker, run_env, at):
    mock_dt = at(MONDAY)
    mocker.patch("yoga_link.fetch_page", return_value=PAGE)
    mocker.patch("yoga_link.send_email")

    main([])

    mock_dt.now.assert_called_once_with(yoga_link.TIMEZONE)
