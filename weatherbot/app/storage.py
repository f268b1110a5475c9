"""
Forecast persistence on PostgreSQL.

Every operation checks out its own connection from the pool and runs inside a
read-committed transaction, so concurrent callers never share a connection.
"""

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg

from .errors import NoData, StorageError, TransactionError, ValidationError
from .metrics import forecasts_stored, store_failures
from .schemas import ForecastRecord, ForecastStatistics, Metric, RecordHolder

logger = logging.getLogger(__name__)

DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

INSERT_FORECAST = """
INSERT INTO forecasts (msg_id, city, description, temp, hum, wind, made_at)
VALUES ($1, $2, $3, $4, $5, $6, $7)
"""

# Ties on a metric go to the lexicographically smallest city, then the oldest row.
FORECAST_STAT = """
SELECT
    totals.total,
    totals.first_made_at,
    top_temp.city AS temp_city,
    top_temp.value AS temp_value,
    top_hum.city AS hum_city,
    top_hum.value AS hum_value,
    top_wind.city AS wind_city,
    top_wind.value AS wind_value
FROM
    (
        SELECT COUNT(*) AS total, MIN(made_at) AS first_made_at
        FROM forecasts
    ) AS totals,
    (
        SELECT city, ROUND(temp::numeric, 2)::float8 AS value
        FROM forecasts
        ORDER BY temp DESC, city COLLATE "C" ASC, made_at ASC
        LIMIT 1
    ) AS top_temp,
    (
        SELECT city, hum::float8 AS value
        FROM forecasts
        ORDER BY hum DESC, city COLLATE "C" ASC, made_at ASC
        LIMIT 1
    ) AS top_hum,
    (
        SELECT city, ROUND(wind::numeric, 2)::float8 AS value
        FROM forecasts
        ORDER BY wind DESC, city COLLATE "C" ASC, made_at ASC
        LIMIT 1
    ) AS top_wind
"""


def validate_record(record: ForecastRecord) -> None:
    problems = []
    if not record.city:
        problems.append("city is empty")
    if not record.humidity > 0:
        problems.append(f"humidity must be positive, got {record.humidity}")
    if not (math.isfinite(record.wind_speed) and record.wind_speed > 0):
        problems.append(f"wind speed must be positive and finite, got {record.wind_speed}")
    if not math.isfinite(record.temperature):
        problems.append(f"temperature must be finite, got {record.temperature}")
    if problems:
        raise ValidationError("invalid forecast record: " + "; ".join(problems))


class ForecastStore:
    def __init__(self, pool: asyncpg.pool.Pool):
        if pool is None:
            raise ValueError("postgres pool is nil")
        self._pool = pool

    async def insert(self, record: ForecastRecord) -> None:
        """
        Append one forecast record. Duplicate message ids are stored as distinct rows.
        """
        try:
            validate_record(record)
            async with self._transaction() as conn:
                await conn.execute(
                    INSERT_FORECAST,
                    record.message_id,
                    record.city,
                    record.description,
                    record.temperature,
                    record.humidity,
                    record.wind_speed,
                    record.made_at,
                )
        except asyncpg.CheckViolationError as exc:
            store_failures.labels(op="insert").inc()
            raise ValidationError(f"forecast record rejected by storage: {exc}") from exc
        except DB_ERRORS as exc:
            store_failures.labels(op="insert").inc()
            raise StorageError(f"insert forecast: {exc}") from exc
        except StorageError:
            store_failures.labels(op="insert").inc()
            raise
        forecasts_stored.inc()

    async def stat(self) -> ForecastStatistics:
        """
        Aggregate statistics over every stored forecast, computed in one round trip.

        Raises NoData when nothing has been stored yet.
        """
        try:
            async with self._transaction() as conn:
                row = await conn.fetchrow(FORECAST_STAT)
        except DB_ERRORS as exc:
            store_failures.labels(op="stat").inc()
            raise StorageError(f"stat forecasts: {exc}") from exc
        except StorageError:
            store_failures.labels(op="stat").inc()
            raise

        # An empty table yields no row at all from the cross join.
        if row is None:
            raise NoData("no stat data")

        return ForecastStatistics(
            total_records=row["total"],
            first_record_at=row["first_made_at"],
            record_holders={
                Metric.TEMPERATURE: RecordHolder(city=row["temp_city"], value=row["temp_value"]),
                Metric.HUMIDITY: RecordHolder(city=row["hum_city"], value=row["hum_value"]),
                Metric.WIND: RecordHolder(city=row["wind_city"], value=row["wind_value"]),
            },
        )

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Commit when the block succeeds, roll back when it raises.

        A failed begin or commit raises TransactionError. A failed rollback
        raises TransactionError chained to the error that caused it.
        """
        async with self._pool.acquire() as conn:
            tr = conn.transaction(isolation="read_committed", readonly=False, deferrable=False)
            try:
                await tr.start()
            except DB_ERRORS as exc:
                raise TransactionError(f"unable to start transaction: {exc}") from exc

            try:
                yield conn
            except (Exception, asyncio.CancelledError) as exc:
                try:
                    await tr.rollback()
                except DB_ERRORS as rollback_exc:
                    raise TransactionError(
                        f"rollback failed: {rollback_exc} (after: {exc!r})"
                    ) from exc
                raise

            try:
                await tr.commit()
            except DB_ERRORS as exc:
                raise TransactionError(f"failed to commit transaction: {exc}") from exc
