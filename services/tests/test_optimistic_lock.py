"""
Optimistic-lock retry decorator.
"""
import pytest

from preorder.core.optimistic_lock import StaleDataError, with_optimistic_retry
from preorder.models.directory import Vendor


@pytest.mark.asyncio
async def test_conflicts_are_replayed_until_success():
    calls = []

    @with_optimistic_retry(max_retries=4)
    async def write():
        calls.append(1)
        if len(calls) < 3:
            raise StaleDataError("lost the race")
        return "committed"

    assert await write() == "committed"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    calls = []

    @with_optimistic_retry(max_retries=2)
    async def write():
        calls.append(1)
        raise StaleDataError("always stale")

    with pytest.raises(StaleDataError):
        await write()
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
    calls = []

    @with_optimistic_retry()
    async def write():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        await write()
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_replay_starts_from_a_rolled_back_session(db):
    seen = []

    @with_optimistic_retry(max_retries=3)
    async def add_vendor(db):
        seen.append(await db.get(Vendor, "v-noodle"))
        db.add(Vendor(id="v-noodle", name="Noodle Nook"))
        await db.flush()
        if len(seen) == 1:
            raise StaleDataError("lost the race")
        await db.commit()

    await add_vendor(db)

    assert seen == [None, None]
    assert (await db.get(Vendor, "v-noodle")).name == "Noodle Nook"


@pytest.mark.asyncio
async def test_session_is_rolled_back_when_giving_up(db):
    @with_optimistic_retry(max_retries=2)
    async def add_vendor(db):
        db.add(Vendor(id="v-noodle", name="Noodle Nook"))
        await db.flush()
        raise StaleDataError("always stale")

    with pytest.raises(StaleDataError):
        await add_vendor(db)

    assert await db.get(Vendor, "v-noodle") is None
