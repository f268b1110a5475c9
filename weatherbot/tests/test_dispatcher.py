"""Tests for chat command handling and reply rendering."""

import httpx
import pytest
import respx

from conftest import MADE_AT, STATISTICS, FakePipeline, FakeStore
from weatherbot.app.dispatcher import (
    HELP_TEXT,
    START_TEXT,
    UNKNOWN_COMMAND_TEXT,
    Dispatcher,
    format_forecast,
    format_statistics,
    is_valid_city_name,
)
from weatherbot.app.errors import (
    CityNotFound,
    CorruptedCall,
    DecodeError,
    ExternalProviderError,
    NoData,
    TransactionError,
)
from weatherbot.app.forecast import OpenWeatherClient
from weatherbot.app.pipeline import ForecastPipeline
from weatherbot.app.schemas import ForecastStatistics, Message, Metric, RecordHolder


def command_message(text: str, message_id: int = 42, chat_id: int = 1001) -> Message:
    command_length = len(text.split(" ", 1)[0])
    return Message.model_validate(
        {
            "message_id": message_id,
            "chat": {"id": chat_id, "type": "private"},
            "text": text,
            "entities": [{"type": "bot_command", "offset": 0, "length": command_length}],
        }
    )


class TestMessageCommand:
    def test_command_and_arguments(self):
        message = command_message("/info   Rio de Janeiro ")
        assert message.is_command
        assert message.command == "info"
        assert message.command_arguments == "Rio de Janeiro"

    def test_bot_name_suffix_is_dropped(self):
        message = command_message("/info@tmpweather_bot London")
        assert message.command == "info"
        assert message.command_arguments == "London"

    def test_plain_text_is_not_a_command(self):
        message = Message.model_validate(
            {"message_id": 1, "chat": {"id": 1}, "text": "hello /info London"}
        )
        assert not message.is_command
        assert message.command == ""


class TestCityName:
    @pytest.mark.parametrize(
        "name", ["London", "Rio de Janeiro", "Saint-Étienne", "Val-d'Isère", "Zürich", "St. Louis"]
    )
    def test_valid(self, name):
        assert is_valid_city_name(name)

    @pytest.mark.parametrize("name", ["", "L0ndon", "London;DROP", "  ", "Paris!"])
    def test_invalid(self, name):
        assert not is_valid_city_name(name)


class TestInfo:
    async def test_forecast_is_stored_and_rendered(self, fake_pipeline, fake_store):
        dispatcher = Dispatcher(fake_pipeline, fake_store)

        reply = await dispatcher.handle(command_message("/info London", message_id=7, chat_id=99))

        assert reply.chat_id == 99
        assert reply.reply_to_message_id == 7
        assert reply.text.startswith("clear sky over London\n\n")
        assert "temp: 12.50 C" in reply.text
        assert "feels like: 11.25 C" in reply.text
        assert "hum: 70 %" in reply.text
        assert "wind: 3.60 m/s" in reply.text

        (record,) = fake_store.records
        assert record.message_id == 7
        assert record.city == "London"
        assert record.humidity == 70
        assert record.made_at == MADE_AT

    @pytest.mark.parametrize(
        "error, text",
        [
            (CityNotFound("nope"), "unknown city, try again"),
            (ExternalProviderError("bad gateway", 502), "forecast error, try again"),
            (CorruptedCall("timeout"), "forecast error, try again"),
            (DecodeError("garbage"), "internal error, try again"),
        ],
    )
    async def test_forecast_errors(self, fake_store, error, text):
        dispatcher = Dispatcher(FakePipeline(errors={"London": error}), fake_store)

        reply = await dispatcher.handle(command_message("/info London"))

        assert reply.text == text
        assert fake_store.records == []

    @pytest.mark.parametrize("text", ["/info", "/info L0ndon", "/info Paris!"])
    async def test_invalid_city(self, fake_pipeline, fake_store, text):
        dispatcher = Dispatcher(fake_pipeline, fake_store)

        reply = await dispatcher.handle(command_message(text))

        assert reply.text == "invalid city, try again"
        assert fake_pipeline.calls == []

    async def test_store_failure_still_returns_forecast(self, fake_pipeline):
        store = FakeStore(insert_error=TransactionError("failed to commit transaction"))
        dispatcher = Dispatcher(fake_pipeline, store)

        reply = await dispatcher.handle(command_message("/info London"))

        assert reply.text.startswith("clear sky over London")


class TestStat:
    async def test_statistics(self, fake_pipeline):
        dispatcher = Dispatcher(fake_pipeline, FakeStore(stat_result=STATISTICS))

        reply = await dispatcher.handle(command_message("/stat"))

        assert "records: 4" in reply.text
        assert "1st at: 01 May 24 12:00 UTC" in reply.text
        assert "temp: A 30.00 C" in reply.text
        assert "hum: B 90 %" in reply.text
        assert "wind: C 12.00 m/s" in reply.text

    async def test_no_data(self, fake_pipeline):
        dispatcher = Dispatcher(fake_pipeline, FakeStore(stat_error=NoData("no stat data")))

        reply = await dispatcher.handle(command_message("/stat"))

        assert reply.text == "no stat data"

    async def test_store_error(self, fake_pipeline):
        dispatcher = Dispatcher(
            fake_pipeline, FakeStore(stat_error=TransactionError("unable to start transaction"))
        )

        reply = await dispatcher.handle(command_message("/stat"))

        assert reply.text == "could not stat, try again"


class TestOtherCommands:
    @pytest.mark.parametrize(
        "text, expected",
        [("/start", START_TEXT), ("/help", HELP_TEXT), ("/weather London", UNKNOWN_COMMAND_TEXT)],
    )
    async def test_static_replies(self, fake_pipeline, fake_store, text, expected):
        dispatcher = Dispatcher(fake_pipeline, fake_store)

        reply = await dispatcher.handle(command_message(text))

        assert reply.text == expected

    async def test_non_command_is_ignored(self, fake_pipeline, fake_store):
        dispatcher = Dispatcher(fake_pipeline, fake_store)
        message = Message.model_validate({"message_id": 1, "chat": {"id": 1}, "text": "London"})

        assert await dispatcher.handle(message) is None

    async def test_run_command_without_chat(self, fake_pipeline, fake_store):
        dispatcher = Dispatcher(fake_pipeline, fake_store)

        text = await dispatcher.run_command("info", "Paris", message_id=0)

        assert text == format_forecast(await fake_pipeline.forecast("Paris"))


async def test_unknown_city_from_provider_is_not_stored(fake_store, respx_mock: respx.MockRouter):
    respx_mock.route(host="owm.test", path="/data/2.5/weather").mock(
        return_value=httpx.Response(404, json={"cod": "404", "message": "city not found"})
    )

    async with OpenWeatherClient("token", base_url="https://owm.test") as client:
        async with ForecastPipeline(client) as pipeline:
            reply = await Dispatcher(pipeline, fake_store).handle(command_message("/info Atlantis"))

    assert reply.text == "unknown city, try again"
    assert fake_store.records == []


def test_format_statistics_skips_missing_holders():
    stat = ForecastStatistics(
        total_records=1,
        first_record_at=MADE_AT,
        record_holders={Metric.WIND: RecordHolder(city="C", value=1.5)},
    )

    text = format_statistics(stat)

    assert "wind: C 1.50 m/s" in text
    assert "temp:" not in text
