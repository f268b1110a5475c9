"""Shared test fixtures and fakes."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest

from weatherbot.app.errors import CityNotFound
from weatherbot.app.schemas import (
    ForecastRecord,
    ForecastResult,
    ForecastStatistics,
    Metric,
    RecordHolder,
)

MADE_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

STATISTICS = ForecastStatistics(
    total_records=4,
    first_record_at=MADE_AT,
    record_holders={
        Metric.TEMPERATURE: RecordHolder(city="A", value=30.0),
        Metric.HUMIDITY: RecordHolder(city="B", value=90),
        Metric.WIND: RecordHolder(city="C", value=12.0),
    },
)


def make_result(city: str = "London", **overrides) -> ForecastResult:
    fields = {
        "made_at": MADE_AT,
        "description": f"clear sky over {city}",
        "temperature": 12.5,
        "feels_like": 11.25,
        "humidity": 70,
        "wind_speed": 3.6,
    }
    fields.update(overrides)
    return ForecastResult(**fields)


def make_record(city: str = "London", **overrides) -> ForecastRecord:
    fields = {
        "message_id": 1,
        "city": city,
        "description": "testable",
        "temperature": 1.0,
        "humidity": 2,
        "wind_speed": 3.0,
        "made_at": MADE_AT,
    }
    fields.update(overrides)
    return ForecastRecord(**fields)


class FakeForecaster:
    """
    Stands in for OpenWeatherClient. Tracks how many fetches overlap.

    Cities listed in `gates` block until their event is set.
    """

    def __init__(self, errors=None):
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.errors = errors or {}
        self.gates = {}
        self.started = {}

    def gate(self, city: str) -> asyncio.Event:
        self.gates[city] = asyncio.Event()
        self.started[city] = asyncio.Event()
        return self.gates[city]

    async def fetch(self, city_name: str) -> ForecastResult:
        self.calls.append(city_name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if city_name in self.gates:
                self.started[city_name].set()
                await self.gates[city_name].wait()
            else:
                await asyncio.sleep(0)
            if city_name in self.errors:
                raise self.errors[city_name]
            return make_result(city_name)
        finally:
            self.in_flight -= 1


class FakeTransaction:
    def __init__(self, conn: "FakeConnection"):
        self.conn = conn

    async def _step(self, name: str) -> None:
        self.conn.events.append(name)
        if name in self.conn.fail_on:
            raise self.conn.fail_on[name]

    async def start(self):
        await self._step("begin")

    async def commit(self):
        await self._step("commit")

    async def rollback(self):
        await self._step("rollback")


class FakeConnection:
    def __init__(self, row=None, fail_on=None):
        self.row = row
        self.fail_on = fail_on or {}
        self.events = []
        self.queries = []
        self.transaction_options = None

    def transaction(self, **options):
        self.transaction_options = options
        return FakeTransaction(self)

    async def execute(self, query, *args):
        self.queries.append((query, args))
        if "execute" in self.fail_on:
            raise self.fail_on["execute"]

    async def fetchrow(self, query, *args):
        self.queries.append((query, args))
        if "fetchrow" in self.fail_on:
            raise self.fail_on["fetchrow"]
        return self.row


class FakePool:
    def __init__(self, conn: FakeConnection):
        self.conn = conn
        self.acquired = 0

    @asynccontextmanager
    async def acquire(self, timeout=None):
        self.acquired += 1
        yield self.conn


class FakeStore:
    def __init__(self, stat_result=None, stat_error=None, insert_error=None):
        self.records = []
        self.stat_result = stat_result
        self.stat_error = stat_error
        self.insert_error = insert_error

    async def insert(self, record: ForecastRecord) -> None:
        if self.insert_error:
            raise self.insert_error
        self.records.append(record)

    async def stat(self):
        if self.stat_error:
            raise self.stat_error
        return self.stat_result


class FakePipeline:
    def __init__(self, errors=None):
        self.calls = []
        self.errors = errors or {}

    async def forecast(self, city_name: str) -> ForecastResult:
        self.calls.append(city_name)
        if city_name in self.errors:
            raise self.errors[city_name]
        return make_result(city_name)


@pytest.fixture
def forecaster() -> FakeForecaster:
    return FakeForecaster(errors={"Atlantis": CityNotFound("city 'Atlantis' not found")})


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def fake_pipeline() -> FakePipeline:
    return FakePipeline()
