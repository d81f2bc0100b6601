from flask import Flask

from app.folio.security import client_ip, detect_bot, strip_tags
from app.folio.utils import parse_datetime, slugify

UA = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) Safari/605.1.15"


def test_detect_bot_clean_submission():
    check = detect_bot(user_agent=UA, timestamp_ms=1_000, now_ms=10_000)
    assert check.is_likely_bot is False
    assert check.reasons == []


def test_detect_bot_reasons():
    check = detect_bot(user_agent="curl", timestamp_ms=9_000, honeypot="filled", now_ms=10_000)
    assert check.is_likely_bot is True
    assert check.reasons == ["Honeypot field filled", "Submitted too quickly", "Missing or suspicious user agent"]

    check = detect_bot(user_agent="Mozilla/5.0 HeadlessChrome/120.0")
    assert "Bot user agent detected" in check.reasons


def test_client_ip_resolution():
    app = Flask(__name__)
    with app.test_request_context("/", headers={"X-Forwarded-For": "203.0.113.5, 10.0.0.1"}):
        assert client_ip() == "203.0.113.5"
    with app.test_request_context("/", headers={"X-Real-IP": "198.51.100.7"}):
        assert client_ip() == "198.51.100.7"
    with app.test_request_context("/", environ_base={"REMOTE_ADDR": "::ffff:192.0.2.1"}):
        assert client_ip() == "192.0.2.1"


def test_strip_tags():
    assert strip_tags("<script type='x'>evil()</script> <p>Hello <b>there</b></p> ") == "Hello there"
    assert strip_tags(None) == ""


def test_slugify():
    assert slugify("Hello, World!") == "hello-world"
    assert slugify("  Café  au   lait -- recipe ") == "cafe-au-lait-recipe"
    assert slugify("!!!") == ""


def test_parse_datetime_normalizes_to_naive_utc():
    dt = parse_datetime("2024-03-01T10:00:00+02:00")
    assert dt.isoformat() == "2024-03-01T08:00:00"
    assert parse_datetime("2024-03-01T10:00:00Z").isoformat() == "2024-03-01T10:00:00"
    assert parse_datetime("") is None
