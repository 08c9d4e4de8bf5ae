import itertools

import pytest

from tipac.model.messages import new_store, _redis, _postgres

pytestmark = [
    pytest.mark.anyio,
    pytest.mark.parametrize("messages_backend", ["redis", "pg"]),
]

CONTACT = {
    "name": "Sarah A.",
    "email": "Sarah@Example.com",
    "subject": "Workshop enquiry",
    "message": "Do you run drama workshops for primary schools?",
}


async def test_contact_persists_and_notifies(client, admin, mailer):
    r = await client.post("/api/contact", json=CONTACT)
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert mailer.sent[0]["subject"] == "Workshop enquiry"

    r = await admin.get("/admin/api/messages")
    body = r.json()
    assert body["page"] == 1
    assert body["totalPages"] == 1
    msg = body["messages"][0]
    assert msg["email"] == "sarah@example.com"
    assert msg["read"] is False
    assert msg["status"] == "unread"


async def test_contact_escapes_html(client, admin):
    await client.post("/api/contact", json={
        **CONTACT, "message": "<script>alert('x')</script> hello there",
    })
    r = await admin.get("/admin/api/messages")
    stored = r.json()["messages"][0]["message"]
    assert "<script>" not in stored
    assert stored.startswith("&lt;script&gt;")


async def test_mail_failure_does_not_fail_request(client, admin, mailer):
    mailer.fail = True
    r = await client.post("/api/contact", json=CONTACT)
    assert r.status_code == 200
    r = await admin.get("/admin/api/messages")
    assert len(r.json()["messages"]) == 1


@pytest.mark.parametrize("field,value", [
    ("name", "S"),
    ("email", "not-an-email"),
    ("subject", "hi"),
    ("message", "too short"),
])
async def test_contact_validation(client, mailer, field, value):
    r = await client.post("/api/contact", json={**CONTACT, field: value})
    assert r.status_code == 400
    assert mailer.sent == []


async def test_mark_read_and_delete(client, admin):
    await client.post("/api/contact", json=CONTACT)
    msg_id = (await admin.get("/admin/api/messages")).json()[
        "messages"][0]["id"]

    r = await admin.patch(f"/admin/api/messages/{msg_id}",
                          json={"read": True})
    assert r.status_code == 200
    msg = (await admin.get("/admin/api/messages")).json()["messages"][0]
    assert msg["read"] is True
    assert msg["status"] == "read"

    r = await admin.put(f"/admin/api/messages/{msg_id}",
                        json={"read": "yes"})
    assert r.status_code == 400

    r = await admin.delete(f"/admin/api/messages/{msg_id}")
    assert r.status_code == 200
    r = await admin.delete(f"/admin/api/messages/{msg_id}")
    assert r.status_code == 404
    r = await admin.patch(f"/admin/api/messages/{msg_id}",
                          json={"read": True})
    assert r.status_code == 404


async def test_pagination_newest_first(app, fake_redis, messages_backend,
                                      monkeypatch):
    clock = itertools.count(1_700_000_000)
    for mod in (_redis, _postgres):
        monkeypatch.setattr(mod, "now_ts", lambda: float(next(clock)))

    async with app.state.SessionAsync() as db:
        ms = new_store(messages_backend, db=db, r=fake_redis,
                       gated=app.state.gated)
        ids = []
        for i in range(12):
            ids.append(await ms.add_message({
                "name": f"Sender {i}", "email": f"s{i}@example.com",
                "subject": "Hello", "message": "Message body number %d" % i,
            }))

        total, page1 = await ms.list_messages(page=1, page_size=10)
        _, page2 = await ms.list_messages(page=2, page_size=10)

    assert total == 12
    assert len(page1) == 10
    assert [m["id"] for m in page2] == [ids[1], ids[0]]
    assert page1[0]["id"] == ids[-1]
