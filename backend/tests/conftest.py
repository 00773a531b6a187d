"""
Pytest fixtures for store admin backend tests.

Provides an in-memory app, per-test table cleanup, admin identity factories
and helpers for driving the login -> challenge pipeline.
"""

import threading

import pyotp
import pytest

from storeadmin import create_app
from storeadmin.extensions import db, get_runtime
from storeadmin.models import AdminBackupCode, AdminUser
from storeadmin.permissions import BUSINESS_PROCESSING, WEBSITE_ADMIN
from storeadmin.services.auth_service import hash_password
from storeadmin.services.session_service import hash_backup_code


TEST_PASSWORD = "Correct!Pw"
TOTP_SECRET = "JBSWY3DPEHPK3PXP"
TEST_PII_KEY = "00112233445566778899aabbccddeeff" * 2
TEST_WEBHOOK_SECRET = "whsec_test_secret"


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'JWT_SECRET': 'test-signing-secret-with-enough-entropy',
    'PII_ENCRYPTION_KEY': TEST_PII_KEY,
    'LEGACY_PASSWORD_PEPPER': 'legacy-pepper',
    'WEBHOOK_SECRETS': {'stripe': TEST_WEBHOOK_SECRET},
    'ALLOWED_ORIGINS': ['http://localhost:5173', 'https://admin.example.com'],
    'COOKIE_PROFILE': 'development',
    'AUDIT_MODE': 'inline',
    'BCRYPT_ROUNDS': 4,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """
    Separate app on a SQLite file, for tests that write from several threads.

    The in-memory database is a single shared connection, so it cannot show
    two sessions racing each other.
    """
    file_app = create_app({
        **TEST_CONFIG,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrent.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
    })
    with file_app.app_context():
        db.create_all()
    yield file_app
    with file_app.app_context():
        db.engine.dispose()


def run_in_threads(app, target, count: int) -> list:
    """Start `count` threads, each calling target() in its own app context; returns their results."""
    results = []
    barrier = threading.Barrier(count)

    def _worker():
        with app.app_context():
            barrier.wait()
            try:
                results.append(target())
            except Exception as exc:
                results.append(exc)

    threads = [threading.Thread(target=_worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert len(results) == count
    return results


@pytest.fixture(scope='function')
def make_admin(db_session):
    """Factory: create an admin identity (TOTP-enrolled unless mfa_secret=None)."""
    def _make(email, password=TEST_PASSWORD, role=WEBSITE_ADMIN, mfa_secret=TOTP_SECRET,
              is_active=True, name=None, backup_codes=()):
        user = AdminUser(
            email=email,
            password_hash=hash_password(password),
            name=name,
            role=role,
            is_active=is_active,
            mfa_secret=mfa_secret,
            mfa_enabled=mfa_secret is not None,
        )
        db_session.add(user)
        db_session.flush()
        for code in backup_codes:
            db_session.add(AdminBackupCode(user_id=user.id, code_hash=hash_backup_code(code)))
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def owner(make_admin):
    """website_admin with every admin capability."""
    return make_admin("owner@example.com", name="Owner")


@pytest.fixture(scope='function')
def staff(make_admin):
    """business_processing: orders and read-only gift cards."""
    return make_admin("staff@example.com", role=BUSINESS_PROCESSING, name="Staff")


@pytest.fixture(scope='function')
def owner_headers(owner):
    return bearer_headers(owner)


@pytest.fixture(scope='function')
def staff_headers(staff):
    return bearer_headers(staff)


def bearer_headers(user) -> dict:
    """Authorization header carrying a fresh access token for `user`."""
    token = get_runtime().tokens.issue_access(user)
    return {'Authorization': f'Bearer {token}'}


def current_totp(secret: str = TOTP_SECRET) -> str:
    return pyotp.TOTP(secret).now()


def login_with_challenge(client, email: str, password: str = TEST_PASSWORD, secret: str = TOTP_SECRET):
    """Run login + challenge; the client's cookie jar holds the session afterwards."""
    resp = client.post('/api/auth/login', json={'email': email, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    pre_token = resp.get_json()['preChallengeToken']
    resp = client.post('/api/auth/challenge', json={
        'code': current_totp(secret),
        'preChallengeToken': pre_token,
    })
    assert resp.status_code == 200, resp.get_json()
    return resp


def set_cookie_headers(resp) -> dict:
    """Map cookie name -> raw Set-Cookie header value."""
    result = {}
    for header in resp.headers.getlist('Set-Cookie'):
        name = header.split('=', 1)[0]
        result[name] = header
    return result
