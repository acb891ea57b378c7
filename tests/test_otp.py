from datetime import datetime, timedelta

import pytest

import otp
from accounts import authenticate
from errors import OtpExpired, OtpInvalid, OtpLocked, RegistrationError
from models import UserOtp
from otp import hash_otp, issue_otp, request_password_reset, reset_password, verify_otp

NOW = datetime(2025, 3, 1, 9, 0)


@pytest.fixture
def outbox(monkeypatch):
    sent = []
    monkeypatch.setattr(otp, "send_mail", lambda to, subject, body: sent.append((to, subject, body)) or True)
    return sent


def test_issue_otp_stores_only_a_hash(student, outbox):
    code = issue_otp(student, now=NOW)

    assert len(code) == 6 and code.isdigit()
    record = UserOtp.query.one()
    assert record.otp_hash == hash_otp(student.user_id, "password_reset", code)
    assert code not in record.otp_hash
    assert record.expires_at == NOW + timedelta(minutes=10)
    assert outbox[0][0] == student.email
    assert code in outbox[0][2]


def test_unknown_purpose(student, outbox):
    with pytest.raises(ValueError):
        issue_otp(student, "token_confirm")


def test_verify_otp(student, outbox):
    code = issue_otp(student, now=NOW)

    record = verify_otp(student, "password_reset", code, now=NOW + timedelta(minutes=5))
    assert record.verified is True
    with pytest.raises(OtpInvalid):
        verify_otp(student, "password_reset", code, now=NOW + timedelta(minutes=6))


def test_expired_otp_is_discarded(student, outbox):
    code = issue_otp(student, now=NOW)

    with pytest.raises(OtpExpired):
        verify_otp(student, "password_reset", code, now=NOW + timedelta(minutes=11))
    assert UserOtp.query.count() == 0


def test_wrong_codes_lock_the_otp(student, outbox):
    code = issue_otp(student, now=NOW)
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(5):
        with pytest.raises(OtpInvalid) as excinfo:
            verify_otp(student, "password_reset", wrong, now=NOW)
        assert type(excinfo.value) is OtpInvalid
    assert UserOtp.query.one().attempts == 5

    with pytest.raises(OtpLocked):
        verify_otp(student, "password_reset", code, now=NOW)
    assert UserOtp.query.count() == 0


def test_new_code_replaces_old(student, outbox):
    first = issue_otp(student, now=NOW)
    second = issue_otp(student, now=NOW + timedelta(minutes=1))

    assert UserOtp.query.count() == 1
    if first != second:
        with pytest.raises(OtpInvalid):
            verify_otp(student, "password_reset", first, now=NOW + timedelta(minutes=2))
    verify_otp(student, "password_reset", second, now=NOW + timedelta(minutes=2))


def test_reset_password_flow(student, outbox):
    assert request_password_reset("nobody@mess.local") is None
    assert outbox == []

    code = request_password_reset("KARIM@mess.local")
    with pytest.raises(RegistrationError):
        reset_password(student.email, code, "abc")
    assert UserOtp.query.one().verified is False

    reset_password(student.email, code, "fresh-pass")
    assert authenticate(student.email, student.registration_no, "fresh-pass") == student
    with pytest.raises(OtpInvalid):
        reset_password(student.email, code, "another-pass")
