import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY

from realestate.common import ServiceSettings, create_engine, dispose_engines
from realestate.support_service.app.main import create_app
from realestate.support_service.app.models import Account, Base, Property
from realestate.support_service.app.notifier import InMemoryNotifier

SUPER_ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "1000"}
AGENT_A = {"X-User-Id": "agent-a", "X-User-Role": "2000"}
AGENT_B = {"X-User-Id": "agent-b", "X-User-Role": "3000"}
AGENT_C = {"X-User-Id": "agent-c", "X-User-Role": "7000"}
CLIENT = {"X-User-Id": "client-1", "X-User-Role": "client"}
OTHER_CLIENT = {"X-User-Id": "client-2", "X-User-Role": "client"}


def _run(coro):
    return asyncio.run(coro)


class RecordingBroadcaster:
    def __init__(self) -> None:
        self.room_events: list[tuple[str, str, dict[str, Any]]] = []
        self.global_events: list[tuple[str, dict[str, Any]]] = []

    async def broadcast_to_room(self, room: str, event: str, payload: dict[str, Any]) -> None:
        self.room_events.append((room, event, payload))

    async def broadcast_global(self, event: str, payload: dict[str, Any]) -> None:
        self.global_events.append((event, payload))

    def global_named(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.global_events if name == event]

    def room_named(self, event: str) -> list[tuple[str, dict[str, Any]]]:
        return [(room, payload) for room, name, payload in self.room_events if name == event]


class FailingBroadcaster:
    async def broadcast_to_room(self, room: str, event: str, payload: dict[str, Any]) -> None:
        raise RuntimeError("real-time hub unreachable")

    async def broadcast_global(self, event: str, payload: dict[str, Any]) -> None:
        raise RuntimeError("real-time hub unreachable")


class FailingNotifier:
    async def case_opened(self, case, property_name) -> None:
        raise RuntimeError("mail provider unreachable")

    async def case_closed(self, case, property_name, closed_by) -> None:
        raise RuntimeError("mail provider unreachable")


class _MetricTracker:
    def __init__(self, name: str, labels: dict[str, str] | None = None) -> None:
        self.name = name
        self.labels = labels or {}
        baseline = REGISTRY.get_sample_value(name, self.labels)
        self._baseline = baseline if baseline is not None else 0.0

    def delta(self) -> float:
        current = REGISTRY.get_sample_value(self.name, self.labels)
        value = current if current is not None else 0.0
        return value - self._baseline


async def _prepare_app(tmp_path) -> FastAPI:
    db_file = tmp_path / "support.db"
    database_url = f"sqlite+aiosqlite:///{db_file}"

    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    settings = ServiceSettings(
        app_name="Support Case Service Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=database_url,
        notification_recipients=["support@example.com"],
    )
    return create_app(settings)


async def _seed_directory(app: FastAPI) -> None:
    async with app.state.session_factory() as session:
        session.add_all(
            [
                Property(id="prop-1", name="Sea View Villa", owner_id="agent-a"),
                Property(id="prop-2", name="Garden Flat", owner_id="agent-b"),
                Account(id="agent-a", name="Alice Agent", email="alice@example.com", role="2000"),
                Account(id="agent-b", name="Bob Agent", email="bob@example.com", role="3000"),
            ]
        )
        await session.commit()


def _case_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "customerName": "Carla Client",
        "customerEmail": "carla@example.com",
        "inquiryAbout": "Booking",
        "inquiryDetails": "Can I move my check-in date?",
        "supporterId": "agent-b",
        "supporterName": "Bob Agent",
        "ownerId": "client-1",
        "propertyId": "prop-1",
        "displayName1": "Carla Client",
        "displayName2": "Sea View Villa",
    }
    payload.update(overrides)
    return {key: value for key, value in payload.items() if value is not None}


def _reply(text: str, name: str = "Bob Agent", author_id: str | None = None) -> dict[str, Any]:
    author: dict[str, Any] = {"displayName": name}
    if author_id is not None:
        author["authorId"] = author_id
    return {"conversation": {"messageBy": author, "message": text}}


@asynccontextmanager
async def running_app(tmp_path, *, broadcaster=None, notifier=None):
    app = await _prepare_app(tmp_path)
    async with app.router.lifespan_context(app):
        await _seed_directory(app)
        app.state.broadcaster = broadcaster or RecordingBroadcaster()
        app.state.notifier = notifier or InMemoryNotifier(["support@example.com"])
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield app, client
    await dispose_engines()


async def _settle(app: FastAPI) -> None:
    await app.state.side_effects.drain()


def test_client_opened_case_starts_open_with_only_client_flag(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            created_tracker = _MetricTracker("support_case_created_total", {"opened_by": "client"})
            response = await client.post(
                "/support-cases/new", json=_case_payload(customerEmail=None), headers=CLIENT
            )
            assert response.status_code == 201
            case = response.json()
            assert case["caseStatus"] == "open"
            assert case["openedBy"] == "client"
            assert case["closedBy"] is None
            assert len(case["conversation"]) == 1
            first = case["conversation"][0]
            assert first["message"] == "A representative will be with you shortly"
            assert first["inquiryAbout"] == "Booking"
            assert first["inquiryDetails"] == "Can I move my check-in date?"
            assert first["messageBy"] == {
                "displayName": "Carla Client",
                "contactEmail": "no-email@example.com",
                "authorId": "client-1",
            }
            assert first["seenByClient"] is True
            assert first["seenByAdmin"] is False
            assert first["seenByAgent"] is False
            assert created_tracker.delta() == 1

            await _settle(app)
            new_chats = app.state.broadcaster.global_named("newChat")
            assert len(new_chats) == 1
            assert new_chats[0]["id"] == case["id"]
            assert new_chats[0]["targetAgentId"] == "agent-a"
            sent = app.state.notifier.sent
            assert [email.subject for email in sent] == ["New Support Case | Sea View Villa"]
            assert "Booking" in sent[0].html
            assert sent[0].recipients == ["support@example.com"]

    _run(body())


def test_staff_openers_get_staff_opening_text(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            admin_case = (
                await client.post(
                    "/support-cases/new",
                    json=_case_payload(supporterId="admin-1", ownerId="agent-a", propertyId="unknown-prop"),
                    headers=SUPER_ADMIN,
                )
            ).json()
            assert admin_case["openedBy"] == "super admin"
            first = admin_case["conversation"][0]
            assert first["message"] == "New support case created by Platform Administration"
            assert first["messageBy"]["authorId"] == "admin-1"
            assert (first["seenByAdmin"], first["seenByAgent"], first["seenByClient"]) == (True, False, False)

            agent_case = (
                await client.post(
                    "/support-cases/new",
                    json=_case_payload(supporterId="admin-1", ownerId="agent-a"),
                    headers=AGENT_A,
                )
            ).json()
            assert agent_case["openedBy"] == "agent"
            first = agent_case["conversation"][0]
            assert first["message"] == "New support case created by agent"
            assert first["messageBy"]["authorId"] == "agent-a"
            assert (first["seenByAdmin"], first["seenByAgent"], first["seenByClient"]) == (False, True, False)

            await _settle(app)
            subjects = [email.subject for email in app.state.notifier.sent]
            assert subjects == [
                "New Support Case | Unknown Property",
                "New Support Case | Sea View Villa",
            ]
            targets = [payload["targetAgentId"] for payload in app.state.broadcaster.global_named("newChat")]
            assert targets == [None, "agent-a"]

    _run(body())


def test_create_case_requires_fields(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            response = await client.post(
                "/support-cases/new",
                json=_case_payload(inquiryAbout=None, displayName2="   "),
                headers=CLIENT,
            )
            assert response.status_code == 400
            detail = response.json()["detail"]
            assert "inquiryAbout" in detail
            assert "displayName2" in detail

            listing = await client.get("/support-cases", headers=SUPER_ADMIN)
            assert listing.json() == []
            await _settle(app)
            assert app.state.broadcaster.global_events == []
            assert app.state.notifier.sent == []

    _run(body())


def test_closing_case_broadcasts_close_exactly_once(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            case_id = (
                await client.post("/support-cases/new", json=_case_payload(), headers=CLIENT)
            ).json()["id"]
            closed_tracker = _MetricTracker("support_case_closed_total", {"closed_by": "agent"})

            response = await client.put(
                f"/support-cases/{case_id}",
                json={"caseStatus": "closed", "closedBy": "agent", "rating": 4.5},
                headers=AGENT_B,
            )
            assert response.status_code == 200
            closed = response.json()
            assert closed["caseStatus"] == "closed"
            assert closed["closedBy"] == "agent"
            assert closed["rating"] == 4.5
            assert closed["openedBy"] == "client"

            again = await client.put(
                f"/support-cases/{case_id}", json={"caseStatus": "closed"}, headers=AGENT_B
            )
            assert again.status_code == 200
            assert again.json()["closedBy"] == "agent"

            await _settle(app)
            close_events = app.state.broadcaster.global_named("closeCase")
            assert len(close_events) == 1
            assert close_events[0]["closedBy"] == "agent"
            assert close_events[0]["case"]["id"] == case_id
            assert close_events[0]["case"]["targetAgentId"] == "agent-a"
            assert closed_tracker.delta() == 1
            subjects = [email.subject for email in app.state.notifier.sent]
            assert subjects.count("Support Case Closed | Sea View Villa") == 1

    _run(body())


def test_close_without_closed_by_uses_caller_role_and_late_messages_are_kept(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            case_id = (
                await client.post("/support-cases/new", json=_case_payload(), headers=CLIENT)
            ).json()["id"]

            response = await client.put(
                f"/support-cases/{case_id}",
                json={"caseStatus": "closed", **_reply("Thanks, all sorted", "Carla Client")},
                headers=CLIENT,
            )
            assert response.status_code == 200
            case = response.json()
            assert case["closedBy"] == "client"
            assert [message["message"] for message in case["conversation"]][-1] == "Thanks, all sorted"

            late = await client.put(
                f"/support-cases/{case_id}", json=_reply("One more thing"), headers=AGENT_B
            )
            assert late.status_code == 200
            assert len(late.json()["conversation"]) == 3

            await _settle(app)
            assert len(app.state.broadcaster.global_named("closeCase")) == 1
            received = app.state.broadcaster.room_named("receiveMessage")
            assert [room for room, _ in received] == [case_id, case_id]
            assert received[0][1]["message"]["message"] == "Thanks, all sorted"
            assert received[0][1]["case"]["caseStatus"] == "closed"

    _run(body())


def test_update_validation_errors(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            case_id = (
                await client.post("/support-cases/new", json=_case_payload(), headers=CLIENT)
            ).json()["id"]

            empty = await client.put(f"/support-cases/{case_id}", json={}, headers=AGENT_B)
            assert empty.status_code == 400
            assert empty.json()["detail"] == "No valid fields provided for update"

            missing = await client.put("/support-cases/does-not-exist", json={"rating": 3}, headers=SUPER_ADMIN)
            assert missing.status_code == 404

            stray_closer = await client.put(
                f"/support-cases/{case_id}", json={"closedBy": "agent"}, headers=AGENT_B
            )
            assert stray_closer.status_code == 400

            blank = await client.put(f"/support-cases/{case_id}", json=_reply("   "), headers=AGENT_B)
            assert blank.status_code == 400

            bad_rating = await client.put(f"/support-cases/{case_id}", json={"rating": 9}, headers=AGENT_B)
            assert bad_rating.status_code == 400

            bad_status = await client.put(f"/support-cases/{case_id}", json={"caseStatus": "pending"}, headers=AGENT_B)
            assert bad_status.status_code == 400
            bad_closer = await client.put(
                f"/support-cases/{case_id}", json={"caseStatus": "closed", "closedBy": "robot"}, headers=AGENT_B
            )
            assert bad_closer.status_code == 400

            closed = await client.put(f"/support-cases/{case_id}", json={"caseStatus": " Closed "}, headers=AGENT_B)
            assert closed.json()["caseStatus"] == "closed"
            reopen = await client.put(f"/support-cases/{case_id}", json={"caseStatus": "open"}, headers=AGENT_B)
            assert reopen.status_code == 400

            case = (await client.get(f"/support-cases/{case_id}", headers=SUPER_ADMIN)).json()
            assert case["caseStatus"] == "closed"
            assert len(case["conversation"]) == 1
            assert case["rating"] is None

    _run(body())


def test_concurrent_appends_keep_both_messages(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            case_id = (
                await client.post("/support-cases/new", json=_case_payload(), headers=CLIENT)
            ).json()["id"]

            first, second = await asyncio.gather(
                client.put(f"/support-cases/{case_id}", json=_reply("From the agent"), headers=AGENT_B),
                client.put(
                    f"/support-cases/{case_id}",
                    json=_reply("From the client", "Carla Client"),
                    headers=CLIENT,
                ),
            )
            assert first.status_code == 200
            assert second.status_code == 200

            case = (await client.get(f"/support-cases/{case_id}", headers=SUPER_ADMIN)).json()
            bodies = [message["message"] for message in case["conversation"]]
            assert len(bodies) == 3
            assert bodies[0] == "A representative will be with you shortly"
            assert set(bodies[1:]) == {"From the agent", "From the client"}

    _run(body())


def test_single_read_visibility(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            case_id = (
                await client.post("/support-cases/new", json=_case_payload(), headers=CLIENT)
            ).json()["id"]

            outsider = await client.get(f"/support-cases/{case_id}", headers=AGENT_C)
            assert outsider.status_code == 403
            assert outsider.json() == {"detail": "Forbidden"}
            assert "conversation" not in outsider.json()

            assert (await client.get(f"/support-cases/{case_id}", headers=OTHER_CLIENT)).status_code == 403
            assert (await client.get(f"/support-cases/{case_id}")).status_code == 403
            assert (await client.get("/support-cases/nope", headers=SUPER_ADMIN)).status_code == 404

            supporter_view = await client.get(f"/support-cases/{case_id}", headers=AGENT_B)
            assert supporter_view.status_code == 200
            expanded = supporter_view.json()
            assert expanded["supporter"]["name"] == "Bob Agent"
            assert expanded["property"] == {"id": "prop-1", "name": "Sea View Villa", "ownerId": "agent-a"}

            owner_view = await client.get(f"/support-cases/{case_id}", headers=AGENT_A)
            assert owner_view.status_code == 200
            participant_view = await client.get(f"/support-cases/{case_id}", headers=CLIENT)
            assert participant_view.status_code == 200

    _run(body())


def test_listings_follow_role_and_origin(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            async def create(headers: dict[str, str], **overrides: Any) -> str:
                response = await client.post("/support-cases/new", json=_case_payload(**overrides), headers=headers)
                assert response.status_code == 201
                return response.json()["id"]

            b2b_assigned = await create(AGENT_A, supporterId="agent-a", ownerId="agent-a", propertyId="prop-2")
            b2b_owned_property = await create(AGENT_B, supporterId="agent-b", ownerId="agent-b", propertyId="prop-1")
            b2c_owned_property = await create(CLIENT, supporterId="agent-b", propertyId="prop-1")
            b2c_foreign = await create(OTHER_CLIENT, supporterId="agent-b", ownerId="client-2", propertyId="prop-2")

            async def ids(path: str, headers: dict[str, str] | None = None, **params: str) -> set[str]:
                response = await client.get(path, headers=headers or {}, params=params)
                assert response.status_code == 200, response.text
                return {case["id"] for case in response.json()}

            assert await ids("/support-cases/active", AGENT_A) == {b2b_assigned}
            assert await ids("/support-cases-clients/active", AGENT_A) == {b2c_owned_property}
            assert await ids("/support-cases", AGENT_A) == {b2b_assigned, b2c_owned_property}
            assert await ids("/support-cases", AGENT_A, status="open", origin="b2c") == {b2c_owned_property}
            assert await ids("/support-cases-clients/active", AGENT_B) == {b2c_owned_property, b2c_foreign}

            assert await ids("/admin/support-cases/b2b/open", SUPER_ADMIN) == {b2b_assigned, b2b_owned_property}
            assert await ids("/admin/support-cases/b2c/open", SUPER_ADMIN) == {b2c_owned_property, b2c_foreign}
            assert await ids("/admin/support-cases/b2c/closed", SUPER_ADMIN) == set()
            assert (await client.get("/admin/support-cases/b2b/open", headers=AGENT_A)).status_code == 403
            assert (await client.get("/admin/support-cases/b2x/open", headers=SUPER_ADMIN)).status_code == 400

            assert await ids("/support-cases/active", CLIENT) == set()
            assert await ids("/support-cases/active") == set()
            assert await ids("/support-cases/mine", CLIENT) == {b2c_owned_property}
            assert await ids("/support-cases/mine", AGENT_A) == {b2b_assigned}

            assert await ids("/support-cases-properties/prop-1/active", SUPER_ADMIN) == {
                b2b_owned_property,
                b2c_owned_property,
            }
            assert await ids("/support-cases-properties/prop-1/active", SUPER_ADMIN, origin="b2c") == {
                b2c_owned_property
            }
            invalid = await client.get("/support-cases-properties/bad$id/active", headers=SUPER_ADMIN)
            assert invalid.status_code == 400
            assert (await client.get("/support-cases", headers=SUPER_ADMIN, params={"status": "pending"})).status_code == 400

            await client.put(f"/support-cases/{b2b_assigned}", json={"caseStatus": "closed"}, headers=AGENT_A)
            assert await ids("/support-cases/closed", AGENT_A) == {b2b_assigned}
            assert await ids("/support-cases/active", AGENT_A) == set()
            assert await ids("/support-cases-properties/prop-2/closed", SUPER_ADMIN) == {b2b_assigned}

    _run(body())


def test_listings_expand_supporter_and_property(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            assigned = (
                await client.post("/support-cases/new", json=_case_payload(), headers=CLIENT)
            ).json()["id"]
            unknown = (
                await client.post(
                    "/support-cases/new",
                    json=_case_payload(supporterId="agent-z", propertyId="prop-404"),
                    headers=CLIENT,
                )
            ).json()["id"]

            listed = {case["id"]: case for case in (await client.get("/support-cases", headers=SUPER_ADMIN)).json()}
            assert listed[assigned]["supporter"]["name"] == "Bob Agent"
            assert listed[assigned]["property"] == {"id": "prop-1", "name": "Sea View Villa", "ownerId": "agent-a"}
            assert listed[unknown]["supporter"] is None
            assert listed[unknown]["property"] is None

            mine = (await client.get("/support-cases/mine", headers=CLIENT)).json()
            assert {case["property"]["name"] for case in mine if case["property"]} == {"Sea View Villa"}

    _run(body())


def test_mark_seen_is_idempotent_and_flags_never_reset(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            case_id = (
                await client.post("/support-cases/new", json=_case_payload(), headers=CLIENT)
            ).json()["id"]
            await client.put(f"/support-cases/{case_id}", json=_reply("Checking now", author_id="agent-b"), headers=AGENT_B)

            first = await client.put(f"/support-cases/{case_id}/seen-by-admin", headers=SUPER_ADMIN)
            assert first.status_code == 200
            assert first.json() == {"message": "Messages marked as seen", "updated": 2}
            snapshot = (await client.get(f"/support-cases/{case_id}", headers=SUPER_ADMIN)).json()["conversation"]

            second = await client.put(f"/support-cases/{case_id}/seen-by-admin", headers=SUPER_ADMIN)
            assert second.status_code == 404
            assert second.json() == {"detail": "Support case not found or no unseen messages"}
            again = (await client.get(f"/support-cases/{case_id}", headers=SUPER_ADMIN)).json()["conversation"]
            assert again == snapshot

            agent_seen = await client.put(f"/support-cases/{case_id}/seen-by-agent", headers=AGENT_B)
            assert agent_seen.json()["updated"] == 1

            client_seen = await client.put(f"/support-cases/{case_id}/seen/client", headers=CLIENT)
            assert client_seen.json()["updated"] == 1

            conversation = (await client.get(f"/support-cases/{case_id}", headers=SUPER_ADMIN)).json()["conversation"]
            for message in conversation:
                assert message["seenByAdmin"] is True
                assert message["seenByAgent"] is True
                assert message["seenByClient"] is True

            assert (await client.put(f"/support-cases/{case_id}/seen-by-admin", headers=AGENT_B)).status_code == 403
            assert (await client.put(f"/support-cases/{case_id}/seen")).status_code == 403
            assert (await client.put(f"/support-cases/{case_id}/seen", headers=AGENT_C)).status_code == 403
            assert (await client.put("/support-cases/missing/seen", headers=SUPER_ADMIN)).status_code == 404

            await _settle(app)
            seen_events = app.state.broadcaster.room_named("messageSeen")
            assert [payload["track"] for _, payload in seen_events] == ["admin", "agent", "client"]

    _run(body())


def test_mark_seen_with_nothing_unseen_is_not_found(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            case_id = (
                await client.post("/support-cases/new", json=_case_payload(), headers=CLIENT)
            ).json()["id"]
            seen_tracker = _MetricTracker("support_messages_seen_total", {"track": "client"})

            response = await client.put(f"/support-cases/{case_id}/seen/client", headers=CLIENT)
            assert response.status_code == 404
            assert response.json() == {"detail": "Support case not found or no unseen messages"}

            conversation = (await client.get(f"/support-cases/{case_id}", headers=CLIENT)).json()["conversation"]
            assert [message["seenByClient"] for message in conversation] == [True]
            assert seen_tracker.delta() == 0

            await _settle(app)
            assert app.state.broadcaster.room_named("messageSeen") == []

    _run(body())


def test_mark_all_seen_and_unseen_count(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            first_case = (
                await client.post("/support-cases/new", json=_case_payload(), headers=CLIENT)
            ).json()["id"]
            await client.post(
                "/support-cases/new",
                json=_case_payload(ownerId="client-2", propertyId="prop-2"),
                headers=OTHER_CLIENT,
            )
            await client.put(f"/support-cases/{first_case}", json=_reply("Hello Carla", author_id="agent-b"), headers=AGENT_B)

            admin_count = await client.get("/support-cases/unseen/count", headers=SUPER_ADMIN)
            assert admin_count.json() == {"count": 3}
            assert (await client.get("/support-cases/unseen/count", headers=CLIENT)).json() == {"count": 1}
            assert (await client.get("/support-cases/unseen/count", headers=AGENT_A)).json() == {"count": 1}
            assert (await client.get("/support-cases/unseen/count")).json() == {"count": 0}

            marked = await client.put("/mark-all-cases-as-seen", headers=SUPER_ADMIN)
            assert marked.status_code == 200
            assert marked.json()["updated"] == 3
            state_once = [
                (await client.get(f"/support-cases/{case['id']}", headers=SUPER_ADMIN)).json()["conversation"]
                for case in (await client.get("/support-cases", headers=SUPER_ADMIN)).json()
            ]

            repeated = await client.put("/mark-all-cases-as-seen", headers=SUPER_ADMIN)
            assert repeated.status_code == 404
            state_twice = [
                (await client.get(f"/support-cases/{case['id']}", headers=SUPER_ADMIN)).json()["conversation"]
                for case in (await client.get("/support-cases", headers=SUPER_ADMIN)).json()
            ]
            assert state_twice == state_once
            assert (await client.get("/support-cases/unseen/count", headers=SUPER_ADMIN)).json() == {"count": 0}
            assert (await client.get("/support-cases/unseen/count", headers=CLIENT)).json() == {"count": 1}

            assert (await client.put("/mark-all-cases-as-seen")).status_code == 403

    _run(body())


def test_delete_message_removes_only_that_message(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            case_id = (
                await client.post("/support-cases/new", json=_case_payload(), headers=CLIENT)
            ).json()["id"]
            await client.put(f"/support-cases/{case_id}", json=_reply("First reply"), headers=AGENT_B)
            await client.put(f"/support-cases/{case_id}", json=_reply("Second reply"), headers=AGENT_B)
            await client.put(f"/support-cases/{case_id}/seen-by-admin", headers=SUPER_ADMIN)
            before = (await client.get(f"/support-cases/{case_id}", headers=SUPER_ADMIN)).json()["conversation"]
            target = before[1]

            assert (
                await client.delete(f"/support-cases/{case_id}/messages/{target['id']}", headers=CLIENT)
            ).status_code == 403
            assert (
                await client.delete(f"/support-cases/{case_id}/messages/{target['id']}", headers=AGENT_C)
            ).status_code == 403

            response = await client.delete(f"/support-cases/{case_id}/messages/{target['id']}", headers=SUPER_ADMIN)
            assert response.status_code == 200
            body_json = response.json()
            assert body_json["message"] == "Message deleted successfully"
            after = body_json["updatedCase"]["conversation"]
            assert len(after) == len(before) - 1
            assert after == [before[0], before[2]]

            assert (
                await client.delete(f"/support-cases/{case_id}/messages/{target['id']}", headers=SUPER_ADMIN)
            ).status_code == 404
            assert (
                await client.delete(f"/support-cases/missing/messages/{target['id']}", headers=SUPER_ADMIN)
            ).status_code == 404

            await client.delete(f"/support-cases/{case_id}/messages/{before[2]['id']}", headers=AGENT_B)
            last = await client.delete(f"/support-cases/{case_id}/messages/{before[0]['id']}", headers=AGENT_B)
            assert last.status_code == 400
            remaining = (await client.get(f"/support-cases/{case_id}", headers=SUPER_ADMIN)).json()["conversation"]
            assert remaining == [before[0]]

            await _settle(app)
            deleted = app.state.broadcaster.room_named("messageDeleted")
            assert deleted == [
                (case_id, {"caseId": case_id, "messageId": target["id"]}),
                (case_id, {"caseId": case_id, "messageId": before[2]["id"]}),
            ]

    _run(body())


def test_failing_side_effects_do_not_fail_requests(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path, broadcaster=FailingBroadcaster(), notifier=FailingNotifier()) as (
            app,
            client,
        ):
            broadcast_failures = _MetricTracker("support_side_effect_failures_total", {"effect": "broadcast"})
            email_failures = _MetricTracker("support_side_effect_failures_total", {"effect": "email"})

            created = await client.post("/support-cases/new", json=_case_payload(), headers=CLIENT)
            assert created.status_code == 201
            case_id = created.json()["id"]

            closed = await client.put(f"/support-cases/{case_id}", json={"caseStatus": "closed"}, headers=AGENT_B)
            assert closed.status_code == 200
            await _settle(app)

            assert broadcast_failures.delta() == 2
            assert email_failures.delta() == 2
            persisted = (await client.get(f"/support-cases/{case_id}", headers=SUPER_ADMIN)).json()
            assert persisted["caseStatus"] == "closed"
            assert persisted["closedBy"] == "agent"

    _run(body())


def test_legacy_author_field_names_are_accepted(tmp_path) -> None:
    async def body() -> None:
        async with running_app(tmp_path) as (app, client):
            case_id = (
                await client.post("/support-cases/new", json=_case_payload(), headers=CLIENT)
            ).json()["id"]
            response = await client.put(
                f"/support-cases/{case_id}",
                json={
                    "conversation": {
                        "messageBy": {
                            "customerName": "Carla Client",
                            "customerEmail": "carla@example.com",
                            "userId": "client-1",
                        },
                        "message": "Any update?",
                    }
                },
                headers=CLIENT,
            )
            assert response.status_code == 200
            appended = response.json()["conversation"][-1]
            assert appended["messageBy"] == {
                "displayName": "Carla Client",
                "contactEmail": "carla@example.com",
                "authorId": "client-1",
            }
            assert (appended["seenByClient"], appended["seenByAgent"], appended["seenByAdmin"]) == (True, False, False)

            nameless = await client.put(
                f"/support-cases/{case_id}", json={"conversation": {"message": "hi"}}, headers=CLIENT
            )
            assert nameless.status_code == 400

    _run(body())
