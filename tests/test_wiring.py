"""Unit tests for api/main.py build_credential_service and auth/delivery.py.

Covers:
- Debug settings wire the logging reset token sink
- Production settings wire no sink
- The logging sink emits the persisted token on the "credvault.mail" logger
"""

import logging
import re

from api.main import build_credential_service
from auth.delivery import log_reset_token
from core.config import Settings


def _settings(**overrides) -> Settings:
    values = {
        "debug": False,
        "jwt_access_secret": "x" * 40,
        "jwt_refresh_secret": "y" * 40,
        "bcrypt_rounds": 4,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_debug_wires_log_sink(store) -> None:
    service = build_credential_service(_settings(debug=True), store)
    assert service.on_reset_token is log_reset_token


def test_production_wires_no_sink(store, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="credvault.api"):
        service = build_credential_service(_settings(), store)
    assert service.on_reset_token is None
    assert any("No reset token delivery" in r.getMessage() for r in caplog.records)


def test_log_sink_emits_the_stored_token(store, caplog) -> None:
    service = build_credential_service(_settings(debug=True), store)
    service.register("mail@y.com", "Mail", "Password@123")

    with caplog.at_level(logging.WARNING, logger="credvault.mail"):
        service.request_password_reset("mail@y.com")

    mail_records = [r for r in caplog.records if r.name == "credvault.mail"]
    assert len(mail_records) == 1
    match = re.search(r"\b[0-9a-f]{64}\b", mail_records[0].getMessage())
    assert match is not None
    owner, _ = store.find_reset_token(match.group(0))
    assert owner.email == "mail@y.com"


def test_log_sink_silent_for_unknown_email(store, caplog) -> None:
    service = build_credential_service(_settings(debug=True), store)
    with caplog.at_level(logging.WARNING, logger="credvault.mail"):
        service.request_password_reset("ghost@y.com")
    assert not [r for r in caplog.records if r.name == "credvault.mail"]
