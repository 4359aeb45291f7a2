import asyncio

import httpx
import pytest
import requests
from sqlalchemy import select

import crm.api.routes.ai as ai_routes
from crm.client.api import CrmApiClient
from crm.core.config import settings
from crm.core.db import get_session
from crm.core.security import create_access_token, get_password_hash
from crm.main import app
from crm.models.audit import AuditLog
from crm.models.user import User
from crm.segments.editor import add_child, update_field
from crm.segments.preview import AudiencePreviewer
from crm.segments.rules import empty_tree

BIG_SPENDERS = {
    "operator": "AND",
    "children": [{"field": "totalSpend", "condition": "GT", "value": 5000}],
}

LAPSED = {
    "operator": "AND",
    "children": [
        {"field": "lastActivity", "condition": "INACTIVE_DAYS", "value": 180},
        {
            "operator": "OR",
            "children": [
                {"field": "totalSpend", "condition": "GT", "value": 5000},
                {"field": "name", "condition": "CONTAINS", "value": "Inc"},
            ],
        },
    ],
}


@pytest.fixture
def user(db_session):
    obj = User(
        user_code="u1",
        user_name="jane",
        password_hash=get_password_hash("secret"),
        display_name="Jane Doe",
        email="jane@example.com",
    )
    db_session.add(obj)
    db_session.commit()
    return obj


@pytest.fixture
def token(user):
    return create_access_token(user.user_code)


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(async_session, user):
    async def override_session():
        yield async_session

    app.dependency_overrides[get_session] = override_session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.mark.anyio
async def test_health_endpoints(client):
    assert (await client.get("/api/healthz")).json() == {"status": "ok"}
    assert (await client.get("/api/readyz")).json() == {"ready": True}


@pytest.mark.anyio
async def test_audience_preview(client, auth_headers):
    resp = await client.post(
        "/api/campaigns/audience-preview",
        json={"segmentRules": BIG_SPENDERS},
        headers=auth_headers,
    )

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "audienceSize": 3,
        "sampleCustomerEmails": ["acme@example.com", "dana@example.com"],
    }


@pytest.mark.anyio
async def test_audience_preview_nested_tree_with_legacy_rules_key(client, auth_headers):
    legacy = {
        "operator": "AND",
        "rules": [
            LAPSED["children"][0],
            {"operator": "OR", "rules": LAPSED["children"][1]["children"]},
        ],
    }
    resp = await client.post(
        "/api/campaigns/audience-preview",
        json={"segmentRules": legacy},
        headers=auth_headers,
    )

    body = resp.json()
    assert body["audienceSize"] == 3
    assert body["sampleCustomerEmails"] == ["globex@example.com", "dana@example.com"]


@pytest.mark.anyio
async def test_audience_preview_of_empty_tree_is_zero(client, auth_headers):
    resp = await client.post(
        "/api/campaigns/audience-preview",
        json={"segmentRules": {"operator": "AND", "children": []}},
        headers=auth_headers,
    )

    assert resp.status_code == 200
    assert resp.json()["audienceSize"] == 0
    assert resp.json()["sampleCustomerEmails"] == []


@pytest.mark.anyio
async def test_audience_preview_rejects_condition_of_wrong_type(client, auth_headers):
    tree = {
        "operator": "AND",
        "children": [{"field": "lastActivity", "condition": "GT", "value": 5}],
    }
    resp = await client.post(
        "/api/campaigns/audience-preview", json={"segmentRules": tree}, headers=auth_headers
    )

    assert resp.status_code == 422
    body = resp.json()
    assert body["success"] is False
    assert body["path"] == [0]
    assert "lastActivity" in body["message"]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "condition",
    [
        {"field": "totalSpend", "condition": "GT", "value": "nan"},
        {"field": "totalSpend", "condition": "LT", "value": "inf"},
        {"field": "lastActivity", "condition": "INACTIVE_DAYS", "value": 1_000_000},
        {"field": "lastActivity", "condition": "ACTIVE_DAYS", "value": "inf"},
    ],
)
async def test_audience_preview_rejects_unusable_numbers(client, auth_headers, condition):
    tree = {"operator": "AND", "children": [condition]}
    resp = await client.post(
        "/api/campaigns/audience-preview", json={"segmentRules": tree}, headers=auth_headers
    )

    assert resp.status_code == 422
    assert resp.json()["success"] is False
    assert resp.json()["path"] == [0]


@pytest.mark.anyio
async def test_audience_preview_rejects_malformed_body(client, auth_headers):
    resp = await client.post(
        "/api/campaigns/audience-preview",
        json={"segmentRules": {"operator": "XOR", "children": []}},
        headers=auth_headers,
    )

    assert resp.status_code == 422
    assert resp.json()["success"] is False
    assert resp.json()["message"].startswith("Invalid request")


@pytest.mark.anyio
async def test_endpoints_require_authentication(client):
    resp = await client.post("/api/campaigns/audience-preview", json={"segmentRules": BIG_SPENDERS})

    assert resp.status_code == 401
    assert resp.json()["success"] is False
    assert resp.json()["message"] == "Not authenticated"

    bad = await client.get("/api/segments/fields", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401


@pytest.mark.anyio
async def test_segment_fields(client, auth_headers):
    resp = await client.get("/api/segments/fields", headers=auth_headers)

    fields = {entry["value"]: entry for entry in resp.json()}
    assert len(fields) == 7
    assert [c["value"] for c in fields["lastActivity"]["conditions"]] == [
        "INACTIVE_DAYS",
        "ACTIVE_DAYS",
    ]


@pytest.mark.anyio
async def test_login_and_current_user(client):
    resp = await client.post("/api/auth/login", json={"username": "jane", "password": "secret"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    me = await client.get(
        "/api/auth/current_user", headers={"Authorization": f"Bearer {token}"}
    )
    assert me.json()["isAuthenticated"] is True
    assert me.json()["user"]["displayName"] == "Jane Doe"

    anon = await client.get("/api/auth/current_user")
    assert anon.json() == {"isAuthenticated": False, "user": None}

    assert (await client.get("/api/auth/logout")).json() == {"success": True}


@pytest.mark.anyio
async def test_login_with_wrong_password(client, db_session):
    resp = await client.post("/api/auth/login", json={"username": "jane", "password": "wrong"})

    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid credentials"
    actions = db_session.execute(select(AuditLog.action)).scalars().all()
    assert actions == ["LOGIN_FAILED"]


@pytest.mark.anyio
async def test_campaign_lifecycle(client, auth_headers, db_session):
    created = await client.post(
        "/api/campaigns",
        json={
            "name": "Win back",
            "messageTemplate": "Hi {{customer_name}}, we miss you!",
            "segmentRules": LAPSED,
        },
        headers=auth_headers,
    )
    assert created.status_code == 201
    body = created.json()
    assert body["audienceSize"] == 3
    assert body["createdBy"] == "u1"
    assert body["status"] == "draft"
    assert body["segmentRules"] == LAPSED

    listed = await client.get("/api/campaigns", headers=auth_headers)
    assert [c["id"] for c in listed.json()] == [body["id"]]

    fetched = await client.get(f"/api/campaigns/{body['id']}", headers=auth_headers)
    assert fetched.json()["name"] == "Win back"

    deleted = await client.delete(f"/api/campaigns/{body['id']}", headers=auth_headers)
    assert deleted.status_code == 204

    missing = await client.get(f"/api/campaigns/{body['id']}", headers=auth_headers)
    assert missing.status_code == 404

    actions = db_session.execute(select(AuditLog.action).order_by(AuditLog.id)).scalars().all()
    assert actions == ["CREATE", "DELETE"]


@pytest.mark.anyio
async def test_campaign_update_recomputes_audience_and_checks_timestamp(client, auth_headers):
    created = (
        await client.post(
            "/api/campaigns",
            json={"name": "Big", "messageTemplate": "Hi", "segmentRules": BIG_SPENDERS},
            headers=auth_headers,
        )
    ).json()
    frequent = {
        "operator": "AND",
        "children": [{"field": "totalVisits", "condition": "GTE", "value": 12}],
    }

    updated = await client.put(
        f"/api/campaigns/{created['id']}",
        json={
            "name": "Frequent",
            "segmentRules": frequent,
            "expectedUpdatedAt": created["updatedAt"],
        },
        headers=auth_headers,
    )
    assert updated.status_code == 200
    assert updated.json()["name"] == "Frequent"
    assert updated.json()["audienceSize"] == 2
    assert updated.json()["segmentRules"] == frequent

    stale = await client.put(
        f"/api/campaigns/{created['id']}",
        json={"status": "scheduled", "expectedUpdatedAt": created["updatedAt"]},
        headers=auth_headers,
    )
    assert stale.status_code == 409
    assert stale.json()["success"] is False

    missing = await client.put(
        "/api/campaigns/999", json={"status": "scheduled"}, headers=auth_headers
    )
    assert missing.status_code == 404


@pytest.mark.anyio
async def test_campaign_requires_complete_rules(client, auth_headers):
    resp = await client.post(
        "/api/campaigns",
        json={
            "name": "Draft",
            "messageTemplate": "Hello",
            "segmentRules": {
                "operator": "AND",
                "children": [{"field": "email", "condition": "", "value": ""}],
            },
        },
        headers=auth_headers,
    )

    assert resp.status_code == 400
    assert resp.json()["message"] == "Please define at least one complete segmentation rule."


@pytest.mark.anyio
async def test_campaign_rejects_out_of_range_day_count(client, auth_headers):
    resp = await client.post(
        "/api/campaigns",
        json={
            "name": "Dormant",
            "messageTemplate": "Hello",
            "segmentRules": {
                "operator": "AND",
                "children": [{"field": "lastActivity", "condition": "INACTIVE_DAYS", "value": 1_000_000}],
            },
        },
        headers=auth_headers,
    )

    assert resp.status_code == 422
    assert resp.json()["path"] == [0]


@pytest.mark.anyio
async def test_ai_rules_not_configured(client, auth_headers, monkeypatch):
    monkeypatch.setattr(settings, "AI_RULES_API_URL", None)

    resp = await client.post(
        "/api/ai/segment-rules", json={"naturalLanguageQuery": "big spenders"}, headers=auth_headers
    )

    assert resp.status_code == 503
    assert resp.json()["success"] is False


@pytest.mark.anyio
async def test_ai_rules_generated_and_sized(client, auth_headers, monkeypatch, db_session):
    seen = {}

    def fake_request(api_url, api_key, query, timeout):
        seen.update(url=api_url, query=query)
        return {"segmentRules": BIG_SPENDERS}

    monkeypatch.setattr(settings, "AI_RULES_API_URL", "http://ai.test/rules")
    monkeypatch.setattr(ai_routes, "_request_segment_rules", fake_request)

    resp = await client.post(
        "/api/ai/segment-rules",
        json={"naturalLanguageQuery": "customers who spent over 5000"},
        headers=auth_headers,
    )

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "segmentRules": BIG_SPENDERS, "audienceSize": 3}
    assert seen == {"url": "http://ai.test/rules", "query": "customers who spent over 5000"}
    assert db_session.execute(select(AuditLog.action)).scalars().all() == ["AI_GENERATE"]


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("outcome", "message"),
    [
        (requests.ConnectionError("refused"), "Error communicating with AI service."),
        ({"segmentRules": {"operator": "XOR", "children": []}}, "AI service returned invalid segment rules."),
        (
            {"operator": "AND", "children": [{"field": "email", "condition": "GT", "value": 1}]},
            "AI service returned invalid segment rules.",
        ),
        (
            {
                "operator": "AND",
                "children": [{"field": "lastActivity", "condition": "INACTIVE_DAYS", "value": 10**12}],
            },
            "AI service returned invalid segment rules.",
        ),
    ],
)
async def test_ai_rules_upstream_failures(client, auth_headers, monkeypatch, outcome, message):
    def fake_request(api_url, api_key, query, timeout):
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(settings, "AI_RULES_API_URL", "http://ai.test/rules")
    monkeypatch.setattr(ai_routes, "_request_segment_rules", fake_request)

    resp = await client.post(
        "/api/ai/segment-rules", json={"naturalLanguageQuery": "anyone"}, headers=auth_headers
    )

    assert resp.status_code == 502
    assert resp.json()["message"] == message


@pytest.mark.anyio
async def test_previewer_against_the_api(client, token):
    api = CrmApiClient("http://testserver", token=token, transport=httpx.ASGITransport(app=app))
    sizes = []
    previewer = AudiencePreviewer(api.get_audience_preview, delay=0.01, on_change=sizes.append)

    tree = add_child(empty_tree(), [])
    previewer.schedule(tree)
    tree = update_field(tree, [0], "field", "totalSpend")
    previewer.schedule(tree)
    tree = update_field(tree, [0], "condition", "GT")
    previewer.schedule(tree)
    tree = update_field(tree, [0], "value", 5000)
    previewer.schedule(tree)

    await asyncio.sleep(0.2)
    await previewer.flush()

    assert previewer.state.audience_size == 3
    assert previewer.state.sample_customer_emails == ["acme@example.com", "dana@example.com"]
    assert sizes == [3]

    tree = update_field(tree, [0], "field", "lastActivity")
    previewer.schedule(tree)
    await asyncio.sleep(0.2)
    await previewer.flush()

    assert previewer.state.audience_size == 3
    assert previewer.state.error == "Condition GT is not valid for date field lastActivity"

    await previewer.aclose()
    await api.aclose()
