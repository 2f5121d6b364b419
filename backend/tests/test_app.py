import pytest
from fastapi.testclient import TestClient

from app.db.session import get_db
from app.main import app
from conftest import make_tenant


@pytest.fixture()
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _signup(client, subdomain="acme-hq", email="owner@acme-hq.io"):
    resp = client.post(
        "/api/v1/auth/signup",
        json={"email": email, "password": "password-123", "name": "Olive Owner", "subdomain": subdomain},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health_carries_security_headers(client):
    resp = client.get("/health")
    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"


def test_subdomain_host_is_echoed(client):
    resp = client.get("/health", headers={"host": "acme.chatbot.test"})
    assert resp.headers["X-Tenant-Subdomain"] == "acme"
    assert "X-Tenant-Subdomain" not in client.get("/health").headers


def test_public_tenant_resolution(client, db):
    make_tenant(db, "acme", custom_domain="support.acme.com")
    assert client.get("/api/v1/tenant/resolve", params={"subdomain": "acme"}).json()["subdomain"] == "acme"
    assert client.get("/api/v1/tenant/resolve", params={"host": "support.acme.com"}).json()["subdomain"] == "acme"
    assert client.get("/api/v1/tenant/resolve", headers={"host": "acme.chatbot.test"}).status_code == 200
    assert client.get("/api/v1/tenant/resolve", params={"subdomain": "nobody"}).status_code == 404


def test_protected_routes_require_a_token(client):
    assert client.get("/api/v1/bots").status_code == 401


def test_signup_then_use_dashboard_api(client):
    account = _signup(client)
    auth = {"Authorization": f"Bearer {account['access_token']}"}

    created = client.post("/api/v1/bots", json={"name": "Helpdesk"}, headers=auth)
    assert created.status_code == 201
    bots = client.get("/api/v1/bots", headers=auth).json()
    assert [b["name"] for b in bots] == ["Helpdesk"]

    tenant = client.get("/api/v1/tenant", headers=auth).json()
    assert tenant["url"] == "https://acme-hq.chatbot.test"
    assert tenant["counts"]["bots"] == 1


def test_host_tenant_must_match_the_token(client):
    account = _signup(client)
    _signup(client, subdomain="globex", email="boss@globex.io")
    auth = {"Authorization": f"Bearer {account['access_token']}"}

    assert client.get("/api/v1/bots", headers={**auth, "host": "acme-hq.chatbot.test"}).status_code == 200
    assert client.get("/api/v1/bots", headers={**auth, "host": "globex.chatbot.test"}).status_code == 403
    assert client.get("/api/v1/bots", headers={**auth, "host": "missing.chatbot.test"}).status_code == 404


def test_unregistered_host_outside_the_root_domain_passes_through(client, db):
    account = _signup(client)
    auth = {"Authorization": f"Bearer {account['access_token']}"}
    make_tenant(db, "globex", custom_domain="chat.globex.com")

    resp = client.get("/api/v1/bots", headers={**auth, "host": "chatbot-api.fly.dev"})
    assert resp.status_code == 200
    assert resp.json() == []
    assert client.get("/api/v1/bots", headers={**auth, "host": "chat.globex.com"}).status_code == 403


def test_widget_script_is_served_where_the_snippet_points(client):
    account = _signup(client)
    auth = {"Authorization": f"Bearer {account['access_token']}"}
    bot = client.post("/api/v1/bots", json={"name": "Helpdesk"}, headers=auth).json()
    widget = client.post("/api/v1/widgets", json={"bot_id": bot["id"], "name": "Site"}, headers=auth).json()

    snippet = client.get(f"/api/v1/widgets/{widget['id']}/embed", headers=auth).json()["snippet_html"]
    assert "/static/chat-widget.js" in snippet

    resp = client.get("/static/chat-widget.js")
    assert resp.status_code == 200
    assert "javascript" in resp.headers["content-type"]
    assert "window.ChatbotWidget" in resp.text


def test_public_chat_over_http(client):
    account = _signup(client)
    auth = {"Authorization": f"Bearer {account['access_token']}"}
    bot = client.post("/api/v1/bots", json={"name": "Helpdesk"}, headers=auth).json()

    resp = client.post("/api/v1/public/chat", json={"message": "hello", "bot_id": bot["id"]})
    assert resp.status_code == 200
    assert resp.json()["metadata"]["model"] == "knowledge-fallback"
    assert "X-Frame-Options" not in resp.headers


def test_document_upload_over_http(client):
    account = _signup(client)
    auth = {"Authorization": f"Bearer {account['access_token']}"}
    bot = client.post("/api/v1/bots", json={"name": "Helpdesk"}, headers=auth).json()
    kb = client.post("/api/v1/knowledge-bases", json={"bot_id": bot["id"], "name": "Docs"}, headers=auth)
    assert kb.status_code == 201
    url = f"/api/v1/knowledge-bases/{kb.json()['id']}/documents"

    rejected = client.post(url, files={"file": ("logo.png", b"\x89PNG....", "image/png")}, headers=auth)
    assert rejected.status_code == 415

    uploaded = client.post(url, files={"file": ("faq.txt", b"Returns are free.", "text/plain")}, headers=auth)
    assert uploaded.status_code == 201
    assert uploaded.json()["status"] == "PROCESSED"
