"""
tests/test_audit.py -- Audit events never decide an authentication outcome.

Covers:
  - A sink that raises does not break emit() or a login
  - LoggingAuditSink writes failures at WARNING and successes at INFO
"""

from __future__ import annotations

import logging

import pytest

from auth.audit import AuthAuditLog, AuthEventKind, LoggingAuditSink, MemoryAuditSink
from auth.errors import InvalidCredentials
from auth.lockout import CredentialVerifier


class ExplodingSink:
    def record(self, event) -> None:
        raise RuntimeError("log backend down")


def test_failing_sink_is_isolated(caplog) -> None:
    memory = MemoryAuditSink()
    log = AuthAuditLog(ExplodingSink(), memory)
    with caplog.at_level(logging.ERROR, logger="techgadgets.auth"):
        log.emit(AuthEventKind.LOGIN_FAILED, email="x@techgadgets.test")
    assert memory.kinds() == [AuthEventKind.LOGIN_FAILED]
    assert "failed to record login_failed" in caplog.text


def test_login_succeeds_with_broken_sink(store, make_user) -> None:
    uid = make_user("buyer@techgadgets.test")
    verifier = CredentialVerifier(store, AuthAuditLog(ExplodingSink()))
    assert verifier.verify("buyer@techgadgets.test", "correct-horse-42").id == uid
    with pytest.raises(InvalidCredentials):
        verifier.verify("buyer@techgadgets.test", "wrong")


def test_logging_sink_levels(caplog) -> None:
    log = AuthAuditLog(LoggingAuditSink())
    with caplog.at_level(logging.INFO, logger="techgadgets.audit"):
        log.emit(AuthEventKind.LOGIN_SUCCEEDED, user_id=1, ip="10.0.0.1")
        log.emit(AuthEventKind.ACCOUNT_LOCKED, user_id=1, detail="attempts=5")

    levels = {r.getMessage().split()[1]: r.levelno for r in caplog.records}
    assert levels["kind=login_succeeded"] == logging.INFO
    assert levels["kind=account_locked"] == logging.WARNING
