"""
HTTP tests: subscription routes, webhook receiver, health and metrics.
"""

import pytest

from jira_relay.models import Subscription

from fakes import BOT_USER_ID, USER_ID, WEBHOOK_SECRET, make_webhook

CHANNEL_A = "chanaaaaaaaaaaaaaaaaaaaaaa"
CHANNEL_B = "chanbbbbbbbbbbbbbbbbbbbbbb"
HEADERS = {"Mattermost-User-Id": USER_ID}
BASE = "/api/v1/subscriptions/channel"


@pytest.fixture
def members(chat_app):
    chat_app.state.chat.members.update({(CHANNEL_A, USER_ID), (CHANNEL_B, USER_ID)})
    return chat_app.state.chat.members


def webhook_body(**kwargs) -> str:
    return make_webhook(**kwargs).model_dump_json(by_alias=True)


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "chat_reachable": True}


async def test_metrics(client, members):
    await client.post(BASE, json={"channel_id": CHANNEL_A, "filters": {}}, headers=HEADERS)
    r = await client.get("/metrics")
    assert r.status_code == 200
    assert 'jira_relay_subscription_writes_total{op="add"} 1' in r.text
    assert "jira_relay_uptime_seconds" in r.text


# ---------------------------------------------------------------------------
# Subscription routes
# ---------------------------------------------------------------------------


async def test_subscription_crud_flow(client, members):
    r = await client.post(
        BASE,
        json={"channel_id": CHANNEL_A, "filters": {"events": ["jira:issue_created"], "project": ["ABC"]}},
        headers=HEADERS,
    )
    assert r.status_code == 200
    sub_id = r.json()["id"]
    assert len(sub_id) == 26

    r = await client.get(f"{BASE}/{CHANNEL_A}", headers=HEADERS)
    assert r.status_code == 200
    assert r.json() == [{
        "id": sub_id,
        "channel_id": CHANNEL_A,
        "filters": {"events": ["jira:issue_created"], "project": ["ABC"]},
    }]

    r = await client.put(
        BASE,
        json={"id": sub_id, "channel_id": CHANNEL_B, "filters": {"events": ["jira:issue_updated"]}},
        headers=HEADERS,
    )
    assert r.status_code == 200
    assert (await client.get(f"{BASE}/{CHANNEL_A}", headers=HEADERS)).json() == []
    assert [s["id"] for s in (await client.get(f"{BASE}/{CHANNEL_B}", headers=HEADERS)).json()] == [sub_id]

    r = await client.delete(f"{BASE}/{sub_id}", headers=HEADERS)
    assert r.status_code == 200
    assert (await client.get(f"{BASE}/{CHANNEL_B}", headers=HEADERS)).json() == []


async def test_missing_identity_header(client, members):
    r = await client.post(BASE, json={"channel_id": CHANNEL_A})
    assert r.status_code == 401
    r = await client.get(f"{BASE}/{CHANNEL_A}")
    assert r.status_code == 401


@pytest.mark.parametrize("body", [
    {"channel_id": "short"},
    {"channel_id": CHANNEL_A, "id": "x" * 26},
])
async def test_create_rejects_invalid_shape(client, members, body):
    r = await client.post(BASE, json=body, headers=HEADERS)
    assert r.status_code == 400


async def test_non_member_cannot_manage_channel(client, members):
    members.discard((CHANNEL_A, USER_ID))
    r = await client.post(BASE, json={"channel_id": CHANNEL_A}, headers=HEADERS)
    assert r.status_code == 403
    r = await client.get(f"{BASE}/{CHANNEL_A}", headers=HEADERS)
    assert r.status_code == 403


async def test_edit_requires_membership_of_source_channel(client, members, service):
    sub_id = await service.add_subscription(Subscription(channel_id=CHANNEL_A))
    members.discard((CHANNEL_A, USER_ID))

    r = await client.put(BASE, json={"id": sub_id, "channel_id": CHANNEL_B}, headers=HEADERS)
    assert r.status_code == 403
    assert (await service.get_subscription(sub_id)).channel_id == CHANNEL_A


async def test_edit_unknown_subscription(client, members):
    r = await client.put(BASE, json={"id": "z" * 26, "channel_id": CHANNEL_A}, headers=HEADERS)
    assert r.status_code == 404
    assert r.json()["stage"] == "lookup"


async def test_delete_unknown_and_malformed_ids(client, members):
    r = await client.delete(f"{BASE}/{'z' * 26}", headers=HEADERS)
    assert r.status_code == 404
    r = await client.delete(f"{BASE}/short", headers=HEADERS)
    assert r.status_code == 400


async def test_corrupt_store_surfaces_decode_stage(client, members, store, relay_app):
    await store.set("jirasub", b"not json")
    r = await client.get(f"{BASE}/{CHANNEL_A}", headers=HEADERS)
    assert r.status_code == 500
    assert r.json()["stage"] == "decode"

    r = await client.get("/metrics")
    assert 'jira_relay_errors_total{stage="decode",status="500"} 1' in r.text
    assert relay_app.state.metrics.get("errors_total", stage="decode") == 1


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


async def test_webhook_posts_to_matching_channels(client, chat_app, service):
    await service.add_subscription(Subscription(channel_id=CHANNEL_A, filters={"events": ["jira:issue_created"], "project": ["ABC"]}))
    await service.add_subscription(Subscription(channel_id=CHANNEL_B, filters={"events": ["jira:issue_created"], "project": ["XYZ"]}))

    r = await client.post(
        f"/webhook?secret={WEBHOOK_SECRET}",
        content=webhook_body(event="jira:issue_created", project="ABC", key="ABC-12"),
    )

    assert r.status_code == 200
    assert r.json() == {"status": "OK", "channels": [CHANNEL_A]}
    posts = chat_app.state.chat.posts
    assert len(posts) == 1
    assert posts[0]["channel_id"] == CHANNEL_A
    assert posts[0]["user_id"] == BOT_USER_ID
    assert "ABC-12" in posts[0]["message"]


async def test_webhook_without_matches_skips_chat(client, chat_app):
    r = await client.post(f"/webhook?secret={WEBHOOK_SECRET}", content=webhook_body())
    assert r.status_code == 200
    assert r.json()["channels"] == []
    assert chat_app.state.chat.user_lookups == 0


async def test_webhook_rejects_bad_secret(client):
    r = await client.post("/webhook?secret=wrong", content=webhook_body())
    assert r.status_code == 403
    r = await client.post("/webhook", content=webhook_body())
    assert r.status_code == 403


async def test_webhook_requires_configured_secret(client, monkeypatch):
    monkeypatch.delenv("TEST_RELAY_SECRET")
    r = await client.post("/webhook?secret=", content=webhook_body())
    assert r.status_code == 403


async def test_webhook_rejects_unparseable_body(client):
    r = await client.post(f"/webhook?secret={WEBHOOK_SECRET}", content=b'{"issue": {}}')
    assert r.status_code == 400


async def test_webhook_reports_failed_deliveries(client, chat_app, service, relay_app):
    await service.add_subscription(Subscription(channel_id=CHANNEL_A, filters={"events": ["jira:issue_created"]}))
    await service.add_subscription(Subscription(channel_id=CHANNEL_B, filters={"events": ["jira:issue_created"]}))
    chat_app.state.chat.rejected_channels.add(CHANNEL_A)

    r = await client.post(f"/webhook?secret={WEBHOOK_SECRET}", content=webhook_body())

    assert r.status_code == 502
    assert r.json() == {"status": "partial", "delivered": [CHANNEL_B], "failed": [CHANNEL_A]}
    assert [p["channel_id"] for p in chat_app.state.chat.posts] == [CHANNEL_B]
    assert relay_app.state.metrics.get("errors_total", stage="deliver", status=502) == 1
