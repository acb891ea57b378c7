import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

from flask import current_app

from accounts import MIN_PASSWORD_LENGTH, change_password, find_by_email
from errors import OtpExpired, OtpInvalid, OtpLocked, RegistrationError
from mailer import send_mail
from models import db, UserOtp, OTP_PURPOSES


def hash_otp(user_id, purpose, code):
    payload = f"{user_id}:{purpose}:{code}:{current_app.config['SECRET_KEY']}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _active(user, purpose):
    return (
        UserOtp.query.filter_by(user_id=user.user_id, purpose=purpose, verified=False)
        .order_by(UserOtp.created_at.desc(), UserOtp.otp_id.desc())
        .first()
    )


def issue_otp(user, purpose="password_reset", now=None):
    """Store a fresh 6 digit code for ``user`` and mail it; returns the code."""
    if purpose not in OTP_PURPOSES:
        raise ValueError(f"unknown otp purpose {purpose!r}")
    now = now or datetime.utcnow()
    UserOtp.query.filter_by(user_id=user.user_id, purpose=purpose, verified=False).delete()

    code = f"{secrets.randbelow(1000000):06d}"
    ttl = current_app.config.get("OTP_TTL_MINUTES", 10)
    db.session.add(UserOtp(
        user_id=user.user_id,
        purpose=purpose,
        otp_hash=hash_otp(user.user_id, purpose, code),
        expires_at=now + timedelta(minutes=ttl),
        attempts=0,
        verified=False,
        created_at=now,
    ))
    db.session.commit()
    current_app.logger.info("otp issued for user %s (%s)", user.user_id, purpose)

    send_mail(
        user.email,
        "Your mess account OTP",
        f"Hello {user.name},\n\n"
        f"Your OTP is: {code}\n"
        f"It is valid for {ttl} minutes.\n"
        "If you did not request this, please ignore this email.\n",
    )
    return code


def verify_otp(user, purpose, code, now=None):
    now = now or datetime.utcnow()
    record = _active(user, purpose)
    if record is None or not code:
        raise OtpInvalid()

    if now > record.expires_at:
        db.session.delete(record)
        db.session.commit()
        raise OtpExpired()

    if record.attempts >= current_app.config.get("OTP_MAX_ATTEMPTS", 5):
        db.session.delete(record)
        db.session.commit()
        raise OtpLocked()

    if not hmac.compare_digest(hash_otp(user.user_id, purpose, str(code).strip()), record.otp_hash):
        record.attempts += 1
        db.session.commit()
        raise OtpInvalid()

    record.verified = True
    db.session.commit()
    return record


def request_password_reset(email):
    """Mail a reset code if the account exists.

    The caller shows the same message either way so accounts cannot be
    enumerated.
    """
    user = find_by_email(email)
    if user is None:
        current_app.logger.info("password reset requested for unknown email")
        return None
    return issue_otp(user, "password_reset")


def reset_password(email, code, new_password):
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise RegistrationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    user = find_by_email(email)
    if user is None:
        raise OtpInvalid()
    verify_otp(user, "password_reset", code)
    change_password(user, new_password)
    return user
