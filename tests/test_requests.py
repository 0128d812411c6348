import asyncio

import pytest

from lostfound_chat.utils.errors import AlreadyProcessed, InvalidArgument, NotAuthorized


OWNER_PHOTO = "https://res.cloudinary.com/demo/image/upload/v1700000001/messages/owner-id.jpg"


def _respond(harness, conversation_id, message_id, responder, status, photo=None):
    return asyncio.run(harness.requests.respond(conversation_id, message_id, responder, status, photo))


def test_send_handover_request(harness):
    harness.add_post()
    conversation_id = harness.open("alice")

    message = harness.send_request(conversation_id, "alice", photos=2)

    request = message["requestData"]
    assert message["messageType"] == "handover_request"
    assert message["text"] == "Handover Request: I found it near the library"
    assert request["status"] == "pending"
    assert request["postId"] == "post-1"
    assert request["idPhotoUrl"].endswith("alice-id.jpg")
    assert [p["description"] for p in request["photos"]] == ["photo 0", "photo 1"]

    conversation = harness.store.conversations[conversation_id]
    assert conversation["hasHandoverRequest"] is True
    assert conversation["handoverRequestId"] == message["_id"]
    assert conversation["handoverRequestStatus"] == "pending"
    assert conversation["unreadCounts"]["owner"] == 2


def test_claim_request_notifies_the_finder(harness):
    harness.add_post(post_type="found", title="Blue Umbrella", foundAction="keep")
    conversation_id = harness.open("carol")

    message = harness.send_request(conversation_id, "carol", kind="claim")

    assert message["messageType"] == "claim_request"
    assert harness.store.conversations[conversation_id]["lastMessage"]["text"] == "New claim request from Carol"
    [notification] = harness.notifications_for("owner", "claim_request")
    assert "Blue Umbrella" in notification["body"]
    assert notification["data"]["messageId"] == message["_id"]


@pytest.mark.parametrize(
    "change",
    [
        {"reason": "   "},
        {"kind": "swap"},
        {"id_photo_url": "not a url"},
        {"id_photo_url": None},
        {"photos": [{"url": f"https://example.com/{i}.jpg"} for i in range(4)]},
        {"photos": [{"url": "ftp://example.com/a.jpg"}]},
    ],
)
def test_malformed_requests_are_rejected_without_writes(harness, change):
    harness.add_post()
    conversation_id = harness.open("alice")
    payload = harness.request_payload()
    payload.update(change)

    with pytest.raises(InvalidArgument):
        asyncio.run(harness.requests.send_request(conversation_id, "alice", "Alice", payload))
    assert len(harness.store.messages) == 1


def test_post_owner_cannot_request_their_own_post(harness):
    harness.add_post()
    conversation_id = harness.open("alice")

    with pytest.raises(NotAuthorized):
        harness.send_request(conversation_id, "owner")


def test_accept_requires_owner_photo(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    message = harness.send_request(conversation_id, "alice")

    with pytest.raises(InvalidArgument):
        _respond(harness, conversation_id, message["_id"], "owner", "accepted")
    assert harness.store.messages[message["_id"]]["requestData"]["status"] == "pending"


def test_accept_moves_request_to_pending_confirmation(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    message = harness.send_request(conversation_id, "alice")

    updated = _respond(harness, conversation_id, message["_id"], "owner", "accepted", OWNER_PHOTO)

    request = updated["requestData"]
    assert request["status"] == "pending_confirmation"
    assert request["ownerIdPhoto"] == OWNER_PHOTO
    assert request["responderId"] == "owner"
    assert harness.store.conversations[conversation_id]["handoverRequestStatus"] == "pending_confirmation"
    [notification] = harness.notifications_for("alice", "handover_response")
    assert notification["title"] == "Handover Request Accepted"

    with pytest.raises(AlreadyProcessed):
        _respond(harness, conversation_id, message["_id"], "owner", "accepted", OWNER_PHOTO)


def test_reject_deletes_photos_and_clears_urls(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    message = harness.send_request(conversation_id, "alice", photos=2)

    updated = _respond(harness, conversation_id, message["_id"], "owner", "rejected")

    request = harness.store.messages[message["_id"]]["requestData"]
    assert updated["requestData"]["status"] == "rejected"
    assert request["status"] == "rejected"
    assert request["idPhotoUrl"] is None
    assert request["ownerIdPhoto"] is None
    assert [p["url"] for p in request["photos"]] == [None, None]
    assert [p["description"] for p in request["photos"]] == ["photo 0", "photo 1"]
    assert request["photosDeleted"] is True
    assert request["cloudinaryDeletionSuccess"] is True
    assert harness.media.urls == set()
    assert len(harness.media.delete_calls[-1]) == 3


def test_reject_records_failed_photo_deletion(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    message = harness.send_request(conversation_id, "alice")
    harness.media.fail_urls.add(message["requestData"]["idPhotoUrl"])

    _respond(harness, conversation_id, message["_id"], "owner", "rejected")

    request = harness.store.messages[message["_id"]]["requestData"]
    assert request["status"] == "rejected"
    assert request["idPhotoUrl"] is None
    assert request["photosDeleted"] is True
    assert request["cloudinaryDeletionSuccess"] is False


def test_reject_after_accept_also_removes_owner_photo(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    message = harness.send_request(conversation_id, "alice")
    harness.media.add(OWNER_PHOTO)
    _respond(harness, conversation_id, message["_id"], "owner", "accepted", OWNER_PHOTO)

    _respond(harness, conversation_id, message["_id"], "owner", "rejected")

    assert OWNER_PHOTO in harness.media.delete_calls[-1]
    assert harness.store.conversations[conversation_id]["handoverRequestStatus"] == "rejected"
    with pytest.raises(AlreadyProcessed):
        _respond(harness, conversation_id, message["_id"], "owner", "rejected")


def test_requester_cannot_answer_their_own_request(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    message = harness.send_request(conversation_id, "alice")

    with pytest.raises(NotAuthorized):
        _respond(harness, conversation_id, message["_id"], "alice", "accepted", OWNER_PHOTO)


def test_plain_messages_cannot_be_answered(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    message_id = next(iter(harness.store.messages))

    with pytest.raises(InvalidArgument):
        _respond(harness, conversation_id, message_id, "owner", "rejected")


def test_concurrent_responses_have_exactly_one_winner(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    message = harness.send_request(conversation_id, "alice")

    async def race():
        return await asyncio.gather(
            harness.requests.respond(conversation_id, message["_id"], "owner", "accepted", OWNER_PHOTO),
            harness.requests.respond(conversation_id, message["_id"], "owner", "accepted", OWNER_PHOTO),
            return_exceptions=True,
        )

    results = asyncio.run(race())

    assert sum(isinstance(r, AlreadyProcessed) for r in results) == 1
    assert sum(isinstance(r, dict) for r in results) == 1


def test_rejection_notification_respects_opt_out(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    message = harness.send_request(conversation_id, "alice")
    asyncio.run(harness.notifications.set_preferences("alice", {"handoverResponses": False}))

    _respond(harness, conversation_id, message["_id"], "owner", "rejected")

    assert harness.notifications_for("alice", "handover_response") == []


def test_pending_requests_listing(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    first = harness.send_request(conversation_id, "alice")
    _respond(harness, conversation_id, first["_id"], "owner", "rejected")
    second = harness.send_request(conversation_id, "alice")

    pending = asyncio.run(harness.requests.pending_for(conversation_id, "owner"))

    assert [m["_id"] for m in pending] == [second["_id"]]


@pytest.mark.parametrize(
    "post, kind",
    [
        ({"post_type": "found", "foundAction": "keep"}, "handover"),
        ({"post_type": "lost"}, "claim"),
        ({"post_type": "found", "foundAction": "turnover to OSA"}, "claim"),
    ],
)
def test_request_kind_must_match_the_post(harness, post, kind):
    harness.add_post(**post)
    conversation_id = harness.open("alice")

    with pytest.raises(InvalidArgument):
        harness.send_request(conversation_id, "alice", kind=kind)
    assert len(harness.store.messages) == 1


def test_one_open_request_of_a_kind_per_conversation(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    first = harness.send_request(conversation_id, "alice")

    with pytest.raises(AlreadyProcessed):
        harness.send_request(conversation_id, "alice")

    _respond(harness, conversation_id, first["_id"], "owner", "accepted", OWNER_PHOTO)
    with pytest.raises(AlreadyProcessed):
        harness.send_request(conversation_id, "alice")

    _respond(harness, conversation_id, first["_id"], "owner", "rejected")
    retry = harness.send_request(conversation_id, "alice")
    assert harness.store.conversations[conversation_id]["handoverRequestId"] == retry["_id"]


def test_only_the_post_owner_answers_requests(harness):
    # opened while the post was unknown, so carol was taken as the reporter
    conversation_id = harness.open("alice", post_id="ghost", reporter="carol")
    harness.add_post(post_id="ghost", creator="owner")
    asyncio.run(harness.conversation_service.refresh_post_snapshot(conversation_id, "alice"))
    message = harness.send_request(conversation_id, "alice")

    with pytest.raises(NotAuthorized):
        _respond(harness, conversation_id, message["_id"], "carol", "accepted", OWNER_PHOTO)
    with pytest.raises(NotAuthorized):
        _respond(harness, conversation_id, message["_id"], "carol", "rejected")
    with pytest.raises(NotAuthorized):
        asyncio.run(harness.requests.confirm(conversation_id, message["_id"], "carol"))

    assert harness.store.messages[message["_id"]]["requestData"]["status"] == "pending"
    assert harness.store.posts["ghost"]["status"] == "pending"
