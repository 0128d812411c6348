import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from lostfound_chat.services.helpers import new_message_doc
from lostfound_chat.utils.errors import InvalidArgument, NotAuthorized, NotFound


def _seed(harness, conversation_id, count, message_type="text", start=None):
    """Insert ``count`` messages directly, oldest first, one second apart."""
    start = start or datetime.now(timezone.utc) - timedelta(hours=1)
    for i in range(count):
        doc = new_message_doc(conversation_id, "alice", "Alice", f"{message_type} {i}", message_type=message_type)
        doc["timestamp"] = start + timedelta(seconds=i)
        if message_type != "text":
            doc["requestData"] = {"kind": message_type.split("_")[0], "status": "pending"}
        asyncio.run(harness.messages.insert(doc))
    return start + timedelta(seconds=count)


def test_send_increments_unread_for_everyone_but_the_sender(harness):
    harness.add_post()
    conversation_id = harness.open("alice")

    message = asyncio.run(harness.exchange.send(conversation_id, "alice", "Alice", "  it has my ID inside  "))

    conversation = harness.store.conversations[conversation_id]
    assert message["text"] == "it has my ID inside"
    assert message["readBy"] == ["alice"]
    assert conversation["unreadCounts"] == {"alice": 0, "owner": 2}
    assert conversation["lastMessage"]["text"] == "it has my ID inside"
    assert conversation["lastMessage"]["senderId"] == "alice"
    assert [e[1] for e in harness.events.events[-2:]] == ["message.created", "conversation.updated"]


def test_send_rejects_empty_text_and_outsiders(harness):
    harness.add_post()
    conversation_id = harness.open("alice")

    with pytest.raises(InvalidArgument):
        asyncio.run(harness.exchange.send(conversation_id, "alice", "Alice", "   "))
    with pytest.raises(NotAuthorized):
        asyncio.run(harness.exchange.send(conversation_id, "bob", "Bob", "hi"))
    with pytest.raises(NotFound):
        asyncio.run(harness.exchange.send("missing", "alice", "Alice", "hi"))


def test_message_notification_respects_preferences(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    asyncio.run(harness.notifications.set_preferences("alice", {"messages": False}))

    asyncio.run(harness.exchange.send(conversation_id, "owner", "Olivia Owner", "where did you find it?"))

    assert harness.notifications_for("alice") == []
    assert harness.store.conversations[conversation_id]["unreadCounts"]["alice"] == 1


def test_fifty_first_message_evicts_the_oldest(harness):
    harness.add_post()
    conversation_id = harness.open("alice", text="opening")
    for i in range(50):
        asyncio.run(harness.exchange.send(conversation_id, "alice", "Alice", f"msg {i}"))

    messages = asyncio.run(harness.messages.list_all(conversation_id))
    assert len(messages) == 50
    assert messages[0]["text"] == "msg 0"
    assert messages[-1]["text"] == "msg 49"


def test_request_messages_are_never_evicted(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    harness.store.messages.clear()
    after = _seed(harness, conversation_id, 48, message_type="handover_request")
    _seed(harness, conversation_id, 2, start=after)

    asyncio.run(harness.exchange.send(conversation_id, "alice", "Alice", "one more"))

    messages = asyncio.run(harness.messages.list_all(conversation_id))
    assert len(messages) == 51
    assert sum(m["messageType"] == "handover_request" for m in messages) == 48


def test_eviction_skips_protected_messages_in_the_window(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    harness.store.messages.clear()
    after = _seed(harness, conversation_id, 1, message_type="claim_request")
    _seed(harness, conversation_id, 50, start=after)

    deleted = asyncio.run(harness.exchange.enforce_retention(conversation_id))

    messages = asyncio.run(harness.messages.list_all(conversation_id))
    assert deleted == 0
    assert messages[0]["messageType"] == "claim_request"

    asyncio.run(harness.exchange.send(conversation_id, "alice", "Alice", "push over"))
    messages = asyncio.run(harness.messages.list_all(conversation_id))
    assert len(messages) == 51
    assert messages[0]["messageType"] == "claim_request"
    assert messages[1]["text"] == "text 1"


def test_list_messages_is_chronological_and_pages_backwards(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    harness.store.messages.clear()
    start = datetime.now(timezone.utc) - timedelta(hours=1)
    _seed(harness, conversation_id, 5, start=start)

    page = asyncio.run(harness.exchange.list_messages(conversation_id, "owner", limit=2))
    assert [m["text"] for m in page] == ["text 3", "text 4"]

    older = asyncio.run(harness.exchange.list_messages(conversation_id, "owner", limit=10, before=page[0]["timestamp"]))
    assert [m["text"] for m in older] == ["text 0", "text 1", "text 2"]

    with pytest.raises(NotAuthorized):
        asyncio.run(harness.exchange.list_messages(conversation_id, "bob"))


def test_mark_message_read(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    message_id = next(iter(harness.store.messages))

    assert asyncio.run(harness.exchange.mark_message_read(conversation_id, message_id, "owner")) is True
    assert asyncio.run(harness.exchange.mark_message_read(conversation_id, message_id, "owner")) is False
    assert harness.store.messages[message_id]["readBy"] == ["alice", "owner"]


def test_delete_message_only_by_sender_and_recomputes_preview(harness):
    harness.add_post()
    conversation_id = harness.open("alice", text="first")
    latest = asyncio.run(harness.exchange.send(conversation_id, "alice", "Alice", "second"))

    with pytest.raises(NotAuthorized):
        asyncio.run(harness.exchange.delete_message(conversation_id, latest["_id"], "owner"))

    asyncio.run(harness.exchange.delete_message(conversation_id, latest["_id"], "alice"))

    assert harness.store.conversations[conversation_id]["lastMessage"]["text"] == "first"
    with pytest.raises(NotFound):
        asyncio.run(harness.exchange.delete_message(conversation_id, latest["_id"], "alice"))


def test_deleting_a_request_message_deletes_its_photos(harness):
    harness.add_post()
    conversation_id = harness.open("alice")
    request = harness.send_request(conversation_id, "alice", photos=2)

    result = asyncio.run(harness.exchange.delete_message(conversation_id, request["_id"], "alice"))

    assert result["photos_deleted"] == 3
    assert harness.media.urls == set()
