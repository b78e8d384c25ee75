import asyncio
from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from tests.conftest import CLIENT_ID, DEFAULT_NOW, RecordingSink
from wakili.domain.errors import NotFoundError, ValidationError
from wakili.domain.verification import service as verification_service
from wakili.infra.clock import FrozenClock
from wakili.infra.verification_store import InMemoryVerificationStore, RedisVerificationStore


class FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, bytes] = {}
        self.expiries: dict[str, int] = {}
        self.fail = False

    async def set(self, key: str, value: str, ex: int | None = None):
        if self.fail:
            raise RedisConnectionError("down")
        self.values[key] = value.encode()
        self.expiries[key] = ex
        return True

    async def get(self, key: str):
        if self.fail:
            raise RedisConnectionError("down")
        return self.values.get(key)

    async def delete(self, *keys: str):
        return sum(1 for key in keys if self.values.pop(key, None) is not None)

    async def aclose(self):
        return None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0712345678", "254712345678"),
        ("+254712345678", "254712345678"),
        ("254112345678", "254112345678"),
        ("0712 345 678", "254712345678"),
    ],
)
def test_normalize_phone_number(raw, expected):
    assert verification_service.normalize_phone_number(raw) == expected


@pytest.mark.parametrize("raw", ["0812345678", "12345", "+2557123456789", ""])
def test_normalize_phone_number_rejects_invalid(raw):
    with pytest.raises(ValidationError):
        verification_service.normalize_phone_number(raw)


def test_generated_codes_are_six_digits():
    codes = {verification_service.generate_code() for _ in range(50)}
    assert all(len(code) == 6 and code.isdigit() for code in codes)


def test_send_and_verify_code(async_session_maker):
    clock = FrozenClock(DEFAULT_NOW)
    store = InMemoryVerificationStore(clock=clock)
    sink = RecordingSink()

    async def _run() -> None:
        async with async_session_maker() as session:
            phone = await verification_service.send_verification_code(
                session, store, sink, CLIENT_ID, "0712345678"
            )
            assert phone == "254712345678"
            assert sink.kinds() == ["phone_verification_code"]
            code = sink.events[0].payload["code"]

            with pytest.raises(ValidationError):
                await verification_service.verify_code(session, store, CLIENT_ID, "000000" if code != "000000" else "111111")

            client = await verification_service.verify_code(session, store, CLIENT_ID, code, now=clock())
            assert client.phone_number == "254712345678"
            assert client.phone_verified_at is not None

            with pytest.raises(ValidationError):
                await verification_service.verify_code(session, store, CLIENT_ID, code)

    asyncio.run(_run())


def test_codes_expire(async_session_maker):
    clock = FrozenClock(DEFAULT_NOW)
    store = InMemoryVerificationStore(clock=clock)
    sink = RecordingSink()

    async def _run() -> None:
        async with async_session_maker() as session:
            await verification_service.send_verification_code(session, store, sink, CLIENT_ID, "0712345678")
            code = sink.events[0].payload["code"]
            clock.set(DEFAULT_NOW + timedelta(seconds=601))
            with pytest.raises(ValidationError):
                await verification_service.verify_code(session, store, CLIENT_ID, code)

    asyncio.run(_run())


def test_send_code_for_unknown_client(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            with pytest.raises(NotFoundError):
                await verification_service.send_verification_code(
                    session, InMemoryVerificationStore(), None, "ghost", "0712345678"
                )

    asyncio.run(_run())


def test_redis_store_uses_expiring_keys():
    fake = FakeRedis()
    store = RedisVerificationStore("redis://unused", redis_client=fake)

    async def _run() -> None:
        await store.put("phone:client-1", "254712345678:123456", 600)
        assert fake.expiries["verification:phone:client-1"] == 600
        assert await store.get("phone:client-1") == "254712345678:123456"
        await store.delete("phone:client-1")
        assert await store.get("phone:client-1") is None
        await store.close()

    asyncio.run(_run())


def test_redis_store_errors_propagate():
    fake = FakeRedis()
    fake.fail = True
    store = RedisVerificationStore("redis://unused", redis_client=fake)

    async def _run() -> None:
        with pytest.raises(RedisConnectionError):
            await store.put("phone:client-1", "x", 600)

    asyncio.run(_run())
