import threading

import pytest

from casauth.stores import (
    InvalidTicketError,
    MemorySessionStore,
    MemoryStore,
    SessionStore,
    TicketStore,
)


class _Response:
    def __init__(self, user):
        self.user = user


def test_memory_store_lifecycle():
    user1 = _Response("user1")
    user2 = _Response("user2")
    store = MemoryStore()

    store.write("user1", user1)
    store.write("user2", user2)

    assert store.read("user2") is user2

    store.delete("user2")
    with pytest.raises(InvalidTicketError):
        store.read("user2")

    store.clear()
    with pytest.raises(InvalidTicketError):
        store.read("user1")


def test_memory_store_read_from_empty_store():
    store = MemoryStore()
    with pytest.raises(InvalidTicketError) as info:
        store.read("ST-1")
    assert info.value.ticket_id == "ST-1"
    assert str(info.value) == "cas: ticket store: invalid ticket"


def test_memory_store_write_overwrites():
    store = MemoryStore()
    first = _Response("a")
    second = _Response("b")
    store.write("ST-1", first)
    store.write("ST-1", second)
    assert store.read("ST-1") is second


def test_memory_store_delete_missing_ticket_keeps_others():
    store = MemoryStore()
    kept = _Response("kept")
    store.write("ST-1", kept)
    store.delete("ST-missing")
    assert store.read("ST-1") is kept


def test_memory_store_usable_after_clear():
    store = MemoryStore()
    store.write("ST-1", _Response("a"))
    store.clear()
    again = _Response("b")
    store.write("ST-2", again)
    assert store.read("ST-2") is again


def test_memory_store_concurrent_writes():
    store = MemoryStore()
    responses = {f"ST-{n}": _Response(str(n)) for n in range(50)}

    def writer(key):
        store.write(key, responses[key])

    threads = [threading.Thread(target=writer, args=(key,)) for key in responses]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert all(store.read(key) is value for key, value in responses.items())


def test_ticket_store_is_abstract():
    with pytest.raises(TypeError):
        TicketStore()


def test_session_store_is_abstract():
    with pytest.raises(TypeError):
        SessionStore()


def test_session_store_get():
    sessions = MemorySessionStore()

    assert sessions.get("key1") is None

    sessions.set("key1", "value1")
    assert sessions.get("key1") == "value1"


def test_session_store_set():
    sessions = MemorySessionStore()

    sessions.set("key1", "value1")
    sessions.set("key2", "value2")

    assert sessions.get("key1") == "value1"
    assert sessions.get("key2") == "value2"

    sessions.set("key2", "value2-new")
    assert sessions.get("key2") == "value2-new"


def test_session_store_delete():
    sessions = MemorySessionStore()

    sessions.set("key1", "value1")
    sessions.set("key2", "value2")

    assert sessions.get("key1") == "value1"
    assert sessions.get("key2") == "value2"

    sessions.delete("key2")

    assert sessions.get("key1") == "value1"
    assert sessions.get("key2") is None


def test_session_store_delete_missing_session():
    sessions = MemorySessionStore()
    sessions.set("key1", "value1")
    sessions.delete("unknown")
    assert sessions.get("key1") == "value1"