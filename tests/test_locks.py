import asyncio

from clinicbook.core.locks import KeyedLock


async def test_same_key_is_serialized():
    locks = KeyedLock()
    order = []

    async def worker(name):
        async with locks.hold(("slot", 1)):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


async def test_different_keys_do_not_wait_on_each_other():
    locks = KeyedLock()
    entered = asyncio.Event()

    async def holder():
        async with locks.hold("a"):
            await asyncio.wait_for(entered.wait(), 1)

    async def other():
        async with locks.hold("b"):
            entered.set()

    await asyncio.gather(holder(), other())


async def test_registry_is_emptied_after_use():
    locks = KeyedLock()
    async with locks.hold("x"):
        assert len(locks) == 1
    assert len(locks) == 0


async def test_lock_released_when_body_raises():
    locks = KeyedLock()
    try:
        async with locks.hold("x"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    assert len(locks) == 0
    async with locks.hold("x"):
        pass
