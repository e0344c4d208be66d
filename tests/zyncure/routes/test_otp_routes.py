import asyncio
import json
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from zyncure import notifications
from zyncure.database import get_db
from zyncure.main import app
from zyncure.models.otp import UserOtp
from zyncure.routes import otp_routes


class _FakeRequest:
    def __init__(self, payload=None, raw: str | None = None):
        self._payload = payload
        self._raw = raw

    async def json(self):
        if self._raw is not None:
            return json.loads(self._raw)
        return self._payload


def _call(route, db, payload=None, raw: str | None = None):
    response = asyncio.run(route(_FakeRequest(payload, raw), db=db))
    return response.status_code, json.loads(response.body)


@pytest.fixture
def sent_emails(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, str]]:
    sent: list[tuple[str, str]] = []

    def fake_send_otp_email(to: str, otp: str) -> dict:
        sent.append((to, otp))
        return {'id': 'email-1'}

    monkeypatch.setattr(notifications, 'send_otp_email', fake_send_otp_email)
    return sent


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_generate_otp_returns_digits_of_configured_length() -> None:
    otp = otp_routes.generate_otp()

    assert len(otp) == 6
    assert otp.isdigit()
    assert len(otp_routes.generate_otp(8)) == 8


def test_request_otp_emails_code_for_valid_credentials(db, make_user, sent_emails) -> None:
    user = make_user('patient', email='pat@example.com', password='s3cret-pass')

    status_code, body = _call(otp_routes.request_otp, db, {'email': ' Pat@Example.com ', 'password': 's3cret-pass'})

    assert status_code == 200
    assert body == {'success': True, 'message': 'OTP sent successfully'}
    assert [to for to, _otp in sent_emails] == ['pat@example.com']

    stored = db.query(UserOtp).filter(UserOtp.user_id == user.id).one()
    assert stored.otp_code == sent_emails[0][1]
    assert stored.used is False
    assert stored.expires_at - stored.created_at == timedelta(minutes=5)


@pytest.mark.parametrize(
    'payload',
    [{}, {'email': 'pat@example.com'}, {'password': 'x'}, {'email': '   ', 'password': 'x'}],
)
def test_request_otp_requires_email_and_password(db, payload) -> None:
    status_code, body = _call(otp_routes.request_otp, db, payload)

    assert status_code == 400
    assert body == {'success': False, 'error': 'Email and password are required'}


def test_request_otp_rejects_bad_credentials(db, make_user, sent_emails) -> None:
    make_user('patient', email='pat@example.com', password='s3cret-pass')

    wrong_password = _call(otp_routes.request_otp, db, {'email': 'pat@example.com', 'password': 'guess'})
    unknown_email = _call(otp_routes.request_otp, db, {'email': 'nobody@example.com', 'password': 'guess'})

    assert wrong_password == (401, {'success': False, 'error': 'Invalid credentials'})
    assert unknown_email == (401, {'success': False, 'error': 'Invalid credentials'})
    assert sent_emails == []
    assert db.query(UserOtp).count() == 0


def test_request_otp_reports_unconfigured_email_service(db, make_user) -> None:
    make_user('patient', email='pat@example.com', password='s3cret-pass')

    status_code, body = _call(otp_routes.request_otp, db, {'email': 'pat@example.com', 'password': 's3cret-pass'})

    assert status_code == 500
    assert body == {'success': False, 'error': 'Failed to send OTP email'}


def test_invalid_json_body_is_rejected(db) -> None:
    for route in (otp_routes.request_otp, otp_routes.send_otp, otp_routes.verify_otp):
        assert _call(route, db, raw='{not json') == (400, {'success': False, 'error': 'Invalid JSON body'})


def test_send_otp_replaces_unused_codes(db, patient, sent_emails) -> None:
    first = _call(otp_routes.send_otp, db, {'user_id': patient.id})
    second = _call(otp_routes.send_otp, db, {'user_id': patient.id})

    assert first[0] == second[0] == 200
    stored = db.query(UserOtp).filter(UserOtp.user_id == patient.id).one()
    assert stored.otp_code == sent_emails[-1][1]


def test_send_otp_validates_user_id(db) -> None:
    assert _call(otp_routes.send_otp, db, {}) == (400, {'success': False, 'error': 'user_id is required'})
    assert _call(otp_routes.send_otp, db, {'user_id': 'missing'}) == (400, {'success': False, 'error': 'User not found'})


def test_verify_otp_accepts_code_once(db, patient, sent_emails) -> None:
    _call(otp_routes.send_otp, db, {'user_id': patient.id})
    otp = sent_emails[0][1]

    status_code, body = _call(otp_routes.verify_otp, db, {'email': patient.email.upper(), 'otp': otp})

    assert status_code == 200
    assert body == {'success': True, 'message': 'OTP verified successfully', 'user_id': patient.id}
    assert _call(otp_routes.verify_otp, db, {'email': patient.email, 'otp': otp}) == (
        400,
        {'success': False, 'error': 'Invalid OTP'},
    )


def test_verify_otp_rejects_wrong_and_expired_codes(db, patient) -> None:
    now = datetime.now()
    db.add(
        UserOtp(
            user_id=patient.id,
            email=patient.email,
            otp_code='123456',
            expires_at=now - timedelta(seconds=1),
            used=False,
            created_at=now - timedelta(minutes=5),
        )
    )
    db.commit()

    assert _call(otp_routes.verify_otp, db, {'email': patient.email, 'otp': '654321'}) == (
        400,
        {'success': False, 'error': 'Invalid OTP'},
    )
    assert _call(otp_routes.verify_otp, db, {'email': patient.email, 'otp': '123456'}) == (
        400,
        {'success': False, 'error': 'OTP has expired'},
    )
    assert _call(otp_routes.verify_otp, db, {'email': patient.email}) == (
        400,
        {'success': False, 'error': 'Email and OTP are required'},
    )


def test_otp_endpoints_only_accept_post(client) -> None:
    response = client.get('/otp/verify')

    assert response.status_code == 405


def test_error_responses_carry_cors_headers(client) -> None:
    response = client.post('/otp/verify', json={}, headers={'Origin': 'http://localhost:5173'})

    assert response.status_code == 400
    assert response.json() == {'success': False, 'error': 'Email and OTP are required'}
    assert response.headers['access-control-allow-origin'] == 'http://localhost:5173'


def test_preflight_allows_client_headers(client) -> None:
    response = client.options(
        '/otp/send',
        headers={
            'Origin': 'http://localhost:5173',
            'Access-Control-Request-Method': 'POST',
            'Access-Control-Request-Headers': 'authorization, apikey, content-type',
        },
    )

    assert response.status_code == 200
    assert response.headers['access-control-allow-origin'] == 'http://localhost:5173'


def test_verify_otp_reads_otp_code_field(db, patient, sent_emails) -> None:
    _call(otp_routes.send_otp, db, {'user_id': patient.id})
    otp = sent_emails[0][1]

    status_code, body = _call(otp_routes.verify_otp, db, {'email': patient.email, 'otp_code': f' {otp} '})

    assert status_code == 200
    assert body['user_id'] == patient.id


def test_verify_otp_accepts_numeric_otp_code(db, patient) -> None:
    now = datetime.now()
    db.add(
        UserOtp(
            user_id=patient.id,
            email=patient.email,
            otp_code='482913',
            expires_at=now + timedelta(minutes=5),
            used=False,
            created_at=now,
        )
    )
    db.commit()

    status_code, body = _call(otp_routes.verify_otp, db, {'email': patient.email, 'otp_code': 482913})

    assert status_code == 200
    assert body['success'] is True
