import httpx
import pytest

from conftest import LOCATION
from memory_transport import InMemoryTransport

from reliefsync.services.api_client import ApiError
from reliefsync.session import ReliefSession


async def create_request(session, **overrides):
    data = {
        "requestType": "food",
        "title": "Rice for family",
        "description": "Family of four needs rice",
        "quantity": 3,
        "urgency": "high",
        "location": LOCATION,
    }
    data.update(overrides)
    return await session.requests.create_request(data)


async def create_offer(session, **overrides):
    data = {
        "resourceType": "food",
        "title": "Rice bags",
        "description": "50kg of rice",
        "quantity": 10,
        "expiresIn": 48,
        "location": LOCATION,
    }
    data.update(overrides)
    return await session.offers.create_offer(data)


###############################################################
# 1. Requests and offers
###############################################################

@pytest.mark.asyncio
async def test_itc_001_victim_creates_request(open_session, backend):
    victim = await open_session("victim", "victim")
    request = await create_request(victim)

    assert victim.requests.error is None
    assert request.status == "pending"
    assert request.quantity == 3
    assert request.urgency == "high"
    assert [r.id for r in victim.requests.requests] == [request.id]
    assert backend.requests[request.id]["userId"] == victim.user.id


@pytest.mark.asyncio
async def test_itc_002_match_then_accept(open_session):
    victim = await open_session("victim", "victim")
    ngo = await open_session("ngo", "ngo")
    offer = await create_offer(ngo)
    assert offer.status == "pending"
    request = await create_request(victim)

    matched = await victim.requests.match_request_with_offer(request.id, offer.id)
    assert matched.status == "matched"
    assert ngo.offers.get(offer.id).status == "matched"

    accepted = await victim.requests.accept_offer(request.id, offer.id)
    assert victim.requests.error is None
    assert accepted.status == "accepted"
    assert victim.registry.find(request.id, offer.id).status == "accepted"
    assert victim.requests.embedded_matches(request.id)[0]["resourceOfferId"] == offer.id

    refreshed = await ngo.offers.fetch_offer(offer.id)
    assert refreshed.status == "matched"
    assert ngo.offers.current_offer.id == offer.id


@pytest.mark.asyncio
async def test_itc_003_fulfilling_offer_fulfils_accepted_requests(open_session):
    victim = await open_session("victim", "victim")
    ngo = await open_session("ngo", "ngo")
    offer = await create_offer(ngo)
    request = await create_request(victim)
    await victim.requests.match_request_with_offer(request.id, offer.id)
    await victim.requests.accept_offer(request.id, offer.id)

    fulfilled = await ngo.offers.fulfill_offer(offer.id)
    assert ngo.offers.error is None
    assert fulfilled.status == "fulfilled"

    # The victim's session learns of the cascade by push and re-fetches
    assert victim.requests.get(request.id).status == "fulfilled"
    assert victim.registry.find(request.id, offer.id).status == "fulfilled"
    assert ngo.registry.find(request.id, offer.id).status == "fulfilled"
    assert victim.notifications.notifications[0].title == "Help Received!"


@pytest.mark.asyncio
async def test_itc_004_matching_twice_posts_once(open_session, backend):
    victim = await open_session("victim", "victim")
    ngo = await open_session("ngo", "ngo")
    offer = await create_offer(ngo)
    request = await create_request(victim)

    await victim.requests.match_request_with_offer(request.id, offer.id)
    again = await victim.requests.match_request_with_offer(request.id, offer.id)

    assert victim.requests.error is None
    assert again.status == "matched"
    posts = [c for c in backend.calls if c == f"POST /matching/requests/{request.id}/match/{offer.id}"]
    assert len(posts) == 1
    assert len(victim.requests.matches_for(request.id)) == 1


@pytest.mark.asyncio
async def test_itc_005_accept_without_match(open_session, backend):
    victim = await open_session("victim", "victim")
    ngo = await open_session("ngo", "ngo")
    first = await create_offer(ngo)
    second = await create_offer(ngo, title="Rice bags (spare)")
    request = await create_request(victim)

    # Still pending: refused before any call is made
    assert await victim.requests.accept_offer(request.id, first.id) is None
    assert victim.requests.error == "Cannot accept a request that is pending"
    assert not any("/accept/" in c for c in backend.calls)

    # Matched with another offer: the backend has no match for this pair
    await victim.requests.match_request_with_offer(request.id, first.id)
    assert await victim.requests.accept_offer(request.id, second.id) is None
    assert victim.requests.error == "Match not found"
    assert victim.requests.get(request.id).status == "matched"


@pytest.mark.asyncio
async def test_itc_006_expired_offer_cannot_be_matched(open_session):
    victim = await open_session("victim", "victim")
    ngo = await open_session("ngo", "ngo")
    offer = await create_offer(ngo)
    request = await create_request(victim)

    expired = await ngo.offers.expire_offer(offer.id)
    assert expired.status == "expired"
    assert await ngo.offers.update_offer(offer.id, {"quantity": 5}) is None
    assert ngo.offers.error == "Cannot edit an offer that is expired"

    assert await victim.requests.match_request_with_offer(request.id, offer.id) is None
    assert victim.requests.error == "Offer is expired and cannot be matched"
    assert victim.requests.get(request.id).status == "pending"


@pytest.mark.asyncio
async def test_itc_007_cancel_and_delete_requests(open_session, backend):
    victim = await open_session("victim", "victim")
    keep = await create_request(victim)
    drop = await create_request(victim, requestType="medical", description="Insulin")

    cancelled = await victim.requests.cancel_request(keep.id)
    assert cancelled.status == "cancelled"
    assert await victim.requests.update_request(keep.id, {"quantity": 4}) is None

    assert await victim.requests.delete_request(drop.id) is True
    assert drop.id not in backend.requests
    assert [r.id for r in victim.requests.requests] == [keep.id]


@pytest.mark.asyncio
async def test_itc_008_role_gates_keep_calls_off_the_wire(open_session, backend):
    ngo = await open_session("ngo", "ngo")
    backend.calls.clear()
    assert await create_request(ngo) is None
    assert ngo.requests.error == "Access denied. Only victims can create requests."
    assert backend.calls == []

    accepted = await ngo.requests.fetch_accepted_for_ngo()
    assert ngo.requests.error is None
    assert accepted == []


@pytest.mark.asyncio
async def test_itc_015_reject_second_offer_after_accepting_first(open_session, backend):
    victim = await open_session("victim", "victim")
    ngo = await open_session("ngo", "ngo")
    first = await create_offer(ngo)
    second = await create_offer(ngo, title="Rice bags (spare)")
    request = await create_request(victim)
    await victim.requests.match_request_with_offer(request.id, first.id)
    await victim.requests.match_request_with_offer(request.id, second.id)
    await victim.requests.accept_offer(request.id, first.id)

    rejected = await victim.requests.reject_offer(request.id, second.id)
    assert victim.requests.error is None
    assert rejected.status == "accepted"
    assert victim.registry.find(request.id, second.id).status == "rejected"
    assert victim.registry.find(request.id, first.id).status == "accepted"
    assert backend.match_for(request.id, second.id)["status"] == "rejected"


###############################################################
# 2. Matching store
###############################################################

@pytest.mark.asyncio
async def test_itc_009_match_by_id_flow(open_session):
    victim = await open_session("victim", "victim")
    ngo = await open_session("ngo", "ngo")
    offer = await create_offer(ngo)
    request = await create_request(victim)

    candidates = await ngo.matching.find_matches(request.id)
    assert [o.id for o in candidates] == [offer.id]

    match = await ngo.matching.match_request_offer(request.id, offer.id)
    assert match.status == "pending"
    # match_created reached the victim's session over the socket
    assert victim.registry.find(request.id, offer.id).id == match.id

    accepted = await ngo.matching.accept_match(match.id)
    assert accepted.status == "accepted"
    assert victim.registry.get(match.id).status == "accepted"
    assert (await victim.requests.fetch_request(request.id)).status == "accepted"

    by_offer = await ngo.matching.fetch_matches_by_offer(offer.id)
    assert [m.id for m in by_offer] == [match.id]
    assert ngo.matching.calculate_stats()["accepted"] == 1

    assert await ngo.matching.reject_match(match.id) is None
    assert ngo.matching.error == "Cannot reject a match that is accepted"


###############################################################
# 3. Notifications and messages
###############################################################

@pytest.mark.asyncio
async def test_itc_010_ngo_is_notified_of_matches(open_session):
    victim = await open_session("victim", "victim")
    ngo = await open_session("ngo", "ngo")
    offer = await create_offer(ngo)
    request = await create_request(victim)

    await victim.requests.match_request_with_offer(request.id, offer.id)
    await victim.requests.accept_offer(request.id, offer.id)

    titles = [n.title for n in ngo.notifications.notifications]
    assert titles == ["Offer Accepted", "New Request Match"]
    assert ngo.notifications.unread_count == 2
    assert ngo.notifications.notifications[1].link == f"/offers/{offer.id}"

    assert await ngo.notifications.mark_all_as_read() is True
    assert ngo.notifications.unread_count == 0
    await ngo.notifications.fetch_notifications()
    assert ngo.notifications.unread_count == 0


@pytest.mark.asyncio
async def test_itc_011_messages_between_users(open_session):
    victim = await open_session("victim", "victim")
    ngo = await open_session("ngo", "ngo")

    sent = await victim.messages.send_message({"recipient": ngo.user.id, "content": "  Is the rice still there?  "})
    assert sent.content == "Is the rice still there?"
    assert [m.id for m in victim.messages.sent] == [sent.id]

    received = await ngo.messages.fetch_received()
    assert [m.id for m in received] == [sent.id]
    assert ngo.messages.unread_count == 1

    await ngo.messages.mark_as_read(sent.id)
    assert ngo.messages.unread_count == 0

    assert await victim.messages.send_message({"recipient": ngo.user.id, "content": "   "}) is None
    assert victim.messages.error.startswith("Failed to send message")
    assert await victim.messages.send_message({"recipient": "nobody", "content": "hello"}) is None
    assert victim.messages.error == "Recipient not found"


###############################################################
# 4. Session lifecycle
###############################################################

@pytest.mark.asyncio
async def test_itc_012_login_with_bad_password_fails(app, backend, settings, hub):
    backend.add_user("Somchai", "somchai@reliefhub.org", "secret123", "victim")
    with pytest.raises(ApiError) as exc:
        await ReliefSession.login(
            "somchai@reliefhub.org", "wrong",
            settings=settings,
            http_transport=httpx.ASGITransport(app=app),
            transport=InMemoryTransport(hub),
        )
    assert exc.value.message == "Invalid credentials"
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_itc_013_stop_unsubscribes_every_store(open_session):
    victim = await open_session("victim", "victim")
    assert victim.user.user_room in victim.transport.rooms
    assert victim.transport.handlers("request_updated")
    assert not victim.offers.started

    await victim.stop()
    for event in ("request_updated", "notification", "match_created", "system_alert"):
        assert victim.transport.handlers(event) == []
    assert victim.transport.rooms == set()
    assert not any(store.started for store in victim.stores)


@pytest.mark.asyncio
async def test_itc_014_login_builds_socket_transport_with_token(app, backend, settings, mocker):
    socket_transport = mocker.patch("reliefsync.session.SocketIOTransport")
    backend.add_user("Aid Partners", "aid@reliefhub.org", "secret123", "ngo")

    session = await ReliefSession.login(
        "aid@reliefhub.org", "secret123",
        settings=settings,
        http_transport=httpx.ASGITransport(app=app),
    )
    try:
        token = session.api.token
        assert token
        socket_transport.assert_called_once_with("http://test", headers={"x-auth-token": token})
        assert session.transport is socket_transport.return_value
        assert session.user.role == "ngo"
    finally:
        await session.api.aclose()
