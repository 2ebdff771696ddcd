import pytest
from werkzeug.security import generate_password_hash

from app.qms import create_app
from app.qms.auth import _login_attempts
from app.qms.db import session_scope
from app.qms.models import Base, Organization, User
from app.qms.modules.standards.seed_data import seed_standards, seed_templates
from scripts.init_db import seed_roles

# email -> (organization, role, first name)
USERS = {
    "admin@example.com": ("Acme", "system_admin", "Ada"),
    "auditor@example.com": ("Acme", "internal_auditor", "Alan"),
    "auditor2@example.com": ("Acme", "internal_auditor", "Grace"),
    "viewer@example.com": ("Acme", "viewer", "Vera"),
    "outsider@example.com": ("Globex", "quality_manager", "Otto"),
}


@pytest.fixture(autouse=True)
def _reset_login_attempts():
    _login_attempts.clear()
    yield
    _login_attempts.clear()


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        roles = seed_roles(s)
        orgs = {name: Organization(name=name) for name in ("Acme", "Globex")}
        s.add_all(orgs.values())
        s.flush()

        pw = generate_password_hash("pw")
        for email, (org_name, role_key, first_name) in USERS.items():
            u = User(
                organization_id=orgs[org_name].id,
                email=email,
                password_hash=pw,
                first_name=first_name,
                last_name="Tester",
                is_active=True,
            )
            u.roles.append(roles[role_key])
            s.add(u)

        seed_standards(s)
        seed_templates(s, orgs["Acme"].id)

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def login(client):
    """Log the test client in and attach the CSRF header to later requests."""

    def _login(email: str = "admin@example.com", password: str = "pw") -> dict:
        client.environ_base.pop("HTTP_X_CSRF_TOKEN", None)
        r = client.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.json
        data = r.json["data"]
        client.environ_base["HTTP_X_CSRF_TOKEN"] = data["csrf_token"]
        return data

    return _login


@pytest.fixture()
def user_ids(app):
    with session_scope(app) as s:
        return {u.email: u.id for u in s.query(User).all()}


@pytest.fixture()
def questions(app):
    """question_number -> id for every seeded question."""
    from app.qms.modules.standards.models import AuditQuestion

    with session_scope(app) as s:
        return {q.question_number: q.id for q in s.query(AuditQuestion).all()}


@pytest.fixture()
def make_assessment(client):
    def _make(title: str = "Q3 internal audit", **fields) -> dict:
        r = client.post("/api/assessments", json={"title": title, **fields})
        assert r.status_code == 201, r.json
        return r.json["data"]

    return _make
