"""Tests for DocumentRepository."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, call, patch

import pytest

from keyspace import (
    BackendError,
    BackendUnavailableError,
    DocumentRepository,
    InvalidKeyError,
    RepositoryConfig,
)
from keyspace.application.cache import ABSENT
from keyspace.application.connections import ConnectionMode
from keyspace.domain import utc_now
from tests.fixtures.test_app import Member, MemberRepository


def persisted(member_id: str, title: str = "") -> Member:
    return Member(member_id=member_id, title=title, modify_date=utc_now())


# Construction


def test_document_type_is_taken_from_generic_base():
    assert MemberRepository.document_type is Member


def test_repository_without_document_type_is_rejected(store):
    with pytest.raises(TypeError, match="needs a document type"):
        DocumentRepository(store)


def test_document_type_can_be_passed_explicitly(store):
    repository = DocumentRepository(store, document_type=Member)
    assert repository.document_type is Member


def test_config_comes_from_store_registry(store, config):
    override = RepositoryConfig(enable_caching=False)
    store.configs.register(Member, override)

    assert MemberRepository(store).config is override


# Working set


def test_create_new_adds_unsaved_document(members, backend):
    member = members.create_new()

    assert isinstance(member, Member)
    assert members.items == (member,)
    assert members.is_new(member)
    assert members.has_changes(member)
    assert member.modify_date is None
    assert backend.values == {}


def test_add_replaces_document_with_same_id(members):
    first = Member(member_id="abc", title="First")
    second = Member(member_id="abc", title="Second")

    members.add(first)
    members.add([second])

    assert members.items == (second,)


def test_add_requires_resolvable_id(members):
    with pytest.raises(InvalidKeyError):
        members.add(Member())


@pytest.mark.asyncio
async def test_added_document_is_always_written(members, seed, backend):
    """Verify add drops any snapshot so the document counts as new."""
    await seed(persisted("abc", "Alice"))
    loaded = await members.get_by_id("abc")
    assert not members.has_changes(loaded)

    members.add(loaded)

    assert members.has_changes(loaded)


def test_remove_only_touches_working_set(members, member):
    members.add(member)
    unsaved = members.create_new()

    members.remove(member)
    members.remove(unsaved)

    assert members.items == ()


# Saving


@pytest.mark.asyncio
async def test_save_writes_new_document(members, backend):
    member = members.create_new()
    member.member_id = "abc"
    member.title = "Alice"

    await members.save()

    stored = Member.deserialize(backend.values["member:abc"][0])
    assert stored.title == "Alice"
    assert stored.id == "member:abc"
    assert member.modify_date is not None
    assert not members.is_new(member)
    assert not members.has_changes(member)


@pytest.mark.asyncio
async def test_save_skips_unchanged_documents(members, member, backend):
    members.add(member)
    await members.save()

    with patch.object(backend, "set", wraps=backend.set) as backend_set:
        await members.save()

    backend_set.assert_not_awaited()


@pytest.mark.asyncio
async def test_save_writes_changed_documents(members, member, backend):
    members.add(member)
    await members.save()
    member.title = "Alice Smith"

    await members.save()

    assert Member.deserialize(backend.values["member:abc"][0]).title == "Alice Smith"


@pytest.mark.asyncio
async def test_force_update_writes_unchanged_documents(members, member, backend):
    members.add(member)
    await members.save()
    first_modify_date = member.modify_date

    with patch.object(backend, "set", wraps=backend.set) as backend_set:
        await members.save(force_update=True)

    backend_set.assert_awaited_once()
    assert member.modify_date >= first_modify_date


@pytest.mark.asyncio
async def test_save_uses_default_record_expiration(members, member, backend):
    members.add(member)

    with patch.object(backend, "set", wraps=backend.set) as backend_set:
        await members.save()

    key, payload, ttl = backend_set.await_args.args
    assert key == "member:abc"
    assert payload == member.serialize().encode()
    assert ttl == timedelta(days=15)
    assert backend_set.await_args.kwargs == {"fire_and_forget": True}


@pytest.mark.asyncio
async def test_save_uses_explicit_expiration(members, member, backend):
    members.add(member)

    with patch.object(backend, "set", wraps=backend.set) as backend_set:
        await members.save(expiration=timedelta(hours=1))

    assert backend_set.await_args.args[2] == timedelta(hours=1)


@pytest.mark.asyncio
async def test_save_passes_zero_expiration_through(members, member, backend):
    members.add(member)

    with patch.object(backend, "set", wraps=backend.set) as backend_set:
        await members.save(expiration=timedelta(0))

    assert backend_set.await_args.args[2] == timedelta(0)


@pytest.mark.asyncio
async def test_save_can_publish_documents(members, member, backend):
    members.add(member)

    await members.save(publish=True)

    assert ("member:abc", member.serialize().encode()) in backend.published


@pytest.mark.asyncio
async def test_save_does_not_cache_uncached_documents(members, member, store):
    members.add(member)
    await members.save()

    assert store.cache.get("member:abc") is None


@pytest.mark.asyncio
async def test_save_advances_cached_copy(members, seed, store):
    """Verify saving a cached document brings the cached copy up to date."""
    await seed(persisted("abc", "Alice"))
    member = await members.get_by_id("abc")
    member.title = "Alice Smith"

    await members.save()

    cached = store.cache.get("member:abc")
    assert cached.title == "Alice Smith"
    assert cached.modify_date == member.modify_date


@pytest.mark.asyncio
async def test_save_replaces_cached_absence(store, backend):
    """Verify a document written here is readable despite an earlier miss."""
    await MemberRepository(store).get_all(["abc"])
    assert store.cache.get("member:abc") is ABSENT

    async with MemberRepository(store) as members:
        member = members.create_new()
        member.member_id = "abc"
        member.title = "Alice"
        await members.save()

    loaded = await MemberRepository(store).get_by_id("abc")

    assert loaded.title == "Alice"
    assert backend.get_calls["member:abc"] == 1


# Loading by id


@pytest.mark.asyncio
async def test_get_by_id_loads_from_backend_and_caches(members, seed, store):
    await seed(persisted("abc", "Alice"))

    member = await members.get_by_id("abc")

    assert member.title == "Alice"
    assert members.items == (member,)
    assert not members.has_changes(member)
    assert store.cache.get("member:abc").title == "Alice"


@pytest.mark.asyncio
async def test_get_by_id_accepts_qualified_id(members, seed):
    await seed(persisted("abc", "Alice"))
    assert (await members.get_by_id("member:abc")).title == "Alice"


@pytest.mark.asyncio
async def test_get_by_id_serves_later_reads_from_cache(store, seed, backend):
    await seed(persisted("abc", "Alice"))

    await MemberRepository(store).get_by_id("abc")
    member = await MemberRepository(store).get_by_id("abc")

    assert member.title == "Alice"
    assert backend.get_calls["member:abc"] == 1


@pytest.mark.asyncio
async def test_cached_document_is_tracked_for_changes(store, seed):
    await seed(persisted("abc", "Alice"))
    await MemberRepository(store).get_by_id("abc")

    members = MemberRepository(store)
    member = await members.get_by_id("abc")
    assert not members.has_changes(member)

    member.title = "Alice Smith"
    assert members.has_changes(member)


@pytest.mark.asyncio
async def test_get_by_id_returns_none_without_caching_absence(members, store, backend):
    assert await members.get_by_id("missing") is None
    assert await members.get_by_id("missing") is None

    assert store.cache.get("member:missing") is None
    assert backend.get_calls["member:missing"] == 2


@pytest.mark.asyncio
async def test_get_by_id_honors_cached_absence(members, store, backend):
    store.cache.set_absent("member:missing")

    assert await members.get_by_id("missing") is None
    assert backend.get_calls["member:missing"] == 0


@pytest.mark.asyncio
async def test_get_by_id_can_bypass_cache(members, seed, store, backend):
    await seed(persisted("abc", "Alice"))
    await members.get_by_id("abc")

    await members.get_by_id("abc", bypass_cache=True)

    assert backend.get_calls["member:abc"] == 2


@pytest.mark.asyncio
async def test_concurrent_loads_of_one_key_reach_backend_once(store, seed, backend):
    """Verify the per-key lock collapses concurrent misses into one fetch."""
    await seed(persisted("abc", "Alice"))
    read = backend.get

    async def slow_get(key: str) -> bytes | None:
        await asyncio.sleep(0)
        return await read(key)

    with patch.object(backend, "get", side_effect=slow_get) as backend_get:
        results = await asyncio.gather(
            *(MemberRepository(store).get_by_id("abc") for _ in range(5))
        )

    assert [member.title for member in results] == ["Alice"] * 5
    assert backend_get.await_count == 1


@pytest.mark.asyncio
async def test_get_by_id_without_caching_always_reads(store, seed, backend):
    store.configs.register(Member, RepositoryConfig(enable_caching=False))
    await seed(persisted("abc", "Alice"))

    await MemberRepository(store).get_by_id("abc")
    await MemberRepository(store).get_by_id("abc")

    assert backend.get_calls["member:abc"] == 2
    assert store.cache.get("member:abc") is None


# Retries


@pytest.mark.asyncio
async def test_get_by_id_retries_with_linear_backoff(store, seed, backend):
    config = RepositoryConfig(retry_backoff=timedelta(milliseconds=5))
    members = MemberRepository(store, config=config)
    await seed(persisted("abc", "Alice"))
    backend.fail_reads(2)

    with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
        member = await members.get_by_id("abc")

    assert member.title == "Alice"
    assert backend.get_calls["member:abc"] == 3
    assert sleep.await_args_list == [call(0.005), call(0.01)]


@pytest.mark.asyncio
async def test_get_by_id_succeeds_after_four_failed_reads(store, seed, backend):
    config = RepositoryConfig(retry_backoff=timedelta(milliseconds=5))
    members = MemberRepository(store, config=config)
    await seed(persisted("abc", "Alice"))
    backend.fail_reads(4)

    with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
        member = await members.get_by_id("abc")

    delays = [args[0] for args, _ in sleep.await_args_list]
    assert member.title == "Alice"
    assert backend.get_calls["member:abc"] == 5
    assert delays == pytest.approx([0.005, 0.01, 0.015, 0.02])
    assert delays == sorted(delays)


@pytest.mark.asyncio
async def test_get_by_id_gives_up_after_retry_attempts(members, backend):
    backend.fail_reads(10)

    with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
        with pytest.raises(BackendUnavailableError) as exc_info:
            await members.get_by_id("abc")

    assert exc_info.value.key == "member:abc"
    assert exc_info.value.attempts == 5
    assert isinstance(exc_info.value.__cause__, BackendError)
    assert backend.get_calls["member:abc"] == 5
    assert sleep.await_count == 4


@pytest.mark.asyncio
async def test_retry_attempts_are_configurable(store, backend):
    members = MemberRepository(store, config=RepositoryConfig(retry_attempts=2))
    backend.fail_reads(10)

    with patch("asyncio.sleep", new_callable=AsyncMock):
        with pytest.raises(BackendUnavailableError):
            await members.get_by_id("abc")

    assert backend.get_calls["member:abc"] == 2


# Batch loading


@pytest.mark.asyncio
async def test_get_all_combines_cache_hits_and_backend_reads(members, seed, store, backend):
    await seed(persisted("a", "A"), persisted("b", "B"))
    store.cache.set(persisted("c", "C"))

    loaded = await members.get_all(["a", "member:b", "c", "missing"])

    assert sorted(member.title for member in loaded) == ["A", "B", "C"]
    assert backend.get_calls["member:c"] == 0
    assert len(members.items) == 3
    assert not any(members.has_changes(member) for member in loaded)


@pytest.mark.asyncio
async def test_get_all_caches_absence(members, store, backend):
    """Verify a repeated batch request for a missing id skips the backend."""
    await members.get_all(["missing"])
    await members.get_all(["missing"])

    assert store.cache.get("member:missing") is ABSENT
    assert backend.get_calls["member:missing"] == 1


@pytest.mark.asyncio
async def test_get_all_reads_repeated_ids_once(members, seed, backend):
    await seed(persisted("a", "A"))

    loaded = await members.get_all(["a", "member:a", "missing", "missing"])

    assert [member.title for member in loaded] == ["A"]
    assert backend.get_calls["member:a"] == 1
    assert backend.get_calls["member:missing"] == 1


@pytest.mark.asyncio
async def test_scan_returns_keys_under_base_key(members, seed, backend):
    await seed(persisted("a"), persisted("b"))
    await backend.set("order:1", b"{}")

    assert await members.scan("*") == ["member:a", "member:b"]
    assert await members.scan("member:*", limit=1) == ["member:a"]


@pytest.mark.asyncio
async def test_get_all_matching_loads_scanned_documents(members, seed):
    await seed(persisted("a", "A"), persisted("b", "B"))

    loaded = await members.get_all_matching("*")

    assert sorted(member.title for member in loaded) == ["A", "B"]


@pytest.mark.asyncio
async def test_scan_rejects_empty_pattern(members):
    with pytest.raises(InvalidKeyError):
        await members.scan("")


# Deleting and publishing


@pytest.mark.asyncio
async def test_delete_by_id_removes_from_backend_and_cache(members, seed, store, backend):
    await seed(persisted("abc", "Alice"))
    member = await members.get_by_id("abc")

    await members.delete("abc")

    assert "member:abc" not in backend.values
    assert store.cache.get("member:abc") is None
    assert members.items == (member,)


@pytest.mark.asyncio
async def test_delete_by_document(members, member, backend):
    members.add(member)
    await members.save()

    await members.delete(member)

    assert "member:abc" not in backend.values


@pytest.mark.asyncio
async def test_publish_document_on_its_id(members, member, backend):
    receivers = await members.publish(member)

    assert receivers == 0
    assert backend.published[-1] == ("member:abc", member.serialize().encode())


@pytest.mark.asyncio
async def test_publish_raw_value_on_channel(members, backend):
    await members.publish("announcements", "hello")

    assert backend.published[-1] == ("announcements", b"hello")


@pytest.mark.asyncio
async def test_publish_to_channel_requires_value(members):
    with pytest.raises(ValueError, match="A value is required"):
        await members.publish("announcements")


# Connections and lifecycle


@pytest.mark.asyncio
async def test_lazy_mode_keeps_own_connection(store, seed, backend):
    config = RepositoryConfig(connection_mode=ConnectionMode.LAZY_PER_INSTANCE)
    members = MemberRepository(store, config=config)
    await seed(persisted("abc", "Alice"))

    assert await members.connection() is await members.connection()

    await members.close()

    assert not backend.is_connected


@pytest.mark.asyncio
async def test_close_clears_working_set(members, member):
    members.add(member)
    await members.save()

    await members.close()

    assert members.items == ()
    assert members.has_changes(member)


@pytest.mark.asyncio
async def test_async_context_manager_closes(store, member):
    async with MemberRepository(store) as members:
        members.add(member)
        await members.subscribe()

    assert members.items == ()
    assert members.subscriber.patterns == []


# End to end


@pytest.mark.asyncio
async def test_member_lifecycle(store, backend):
    """Create, read, change, re-read past the cache, delete and read nothing."""
    async with MemberRepository(store) as members:
        member = members.create_new()
        member.member_id = "abc"
        member.title = "Alice"
        await members.save()
        assert member.id == "member:abc"

    async with MemberRepository(store) as members:
        loaded = await members.get_by_id("abc")
        assert loaded.title == "Alice"

        loaded.title = "Alice Smith"
        await members.save()

    async with MemberRepository(store) as members:
        reloaded = await members.get_by_id("abc", bypass_cache=True)
        assert reloaded.title == "Alice Smith"
        assert reloaded.serialize().encode() == backend.values["member:abc"][0]

        await members.delete("member:abc")

    async with MemberRepository(store) as members:
        assert await members.get_by_id("abc") is None
