import logging
import re
from typing import Optional

from .errors import CityNotFound, CorruptedCall, ExternalProviderError, NoData
from .metrics import chat_commands
from .pipeline import ForecastPipeline
from .schemas import ForecastRecord, ForecastResult, ForecastStatistics, Message, Metric, Reply
from .storage import ForecastStore

logger = logging.getLogger(__name__)

# Words of latin letters (accented included) joined by a space, "-" or "'".
# https://stackoverflow.com/a/25677072
CITY_NAME_RE = re.compile(r"^([a-zA-Z\u0080-\u024F]+(?:. |-| |'))*[a-zA-Z\u0080-\u024F]*$")

START_TEXT = 'Enter "/info city_name" to forecast'
HELP_TEXT = "/info city_name - do forecast\n/stat - take statistics"
UNKNOWN_COMMAND_TEXT = "I don't know that command"

KNOWN_COMMANDS = ("info", "stat", "start", "help")


class CommandLogger(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[chat={self.extra['chat_id']} msg={self.extra['msg_id']}] {msg}", kwargs


def format_forecast(forecast: ForecastResult) -> str:
    # https://openweathermap.org/weather-data
    return (
        f"{forecast.description}\n\n"
        f"temp: {forecast.temperature:.2f} C\n"
        f"feels like: {forecast.feels_like:.2f} C\n\n"
        f"hum: {forecast.humidity} %\n"
        f"wind: {forecast.wind_speed:.2f} m/s\n"
    )


def format_statistics(stat: ForecastStatistics) -> str:
    holders = stat.record_holders
    lines = [
        "Total",
        f"    records: {stat.total_records}",
        f"    1st at: {stat.first_record_at.strftime('%d %b %y %H:%M %Z')}",
        "",
        "Top forecast",
    ]
    if Metric.TEMPERATURE in holders:
        top = holders[Metric.TEMPERATURE]
        lines.append(f"    temp: {top.city} {top.value:.2f} C")
    if Metric.HUMIDITY in holders:
        top = holders[Metric.HUMIDITY]
        lines.append(f"    hum: {top.city} {top.value:.0f} %")
    if Metric.WIND in holders:
        top = holders[Metric.WIND]
        lines.append(f"    wind: {top.city} {top.value:.2f} m/s")
    return "\n".join(lines) + "\n"


def is_valid_city_name(city_name: str) -> bool:
    return bool(city_name) and CITY_NAME_RE.match(city_name) is not None


class Dispatcher:
    """
    Turns chat commands into pipeline and store calls and renders the replies.
    """

    def __init__(self, pipeline: ForecastPipeline, store: ForecastStore):
        self.pipeline = pipeline
        self.store = store

    async def handle(self, message: Message) -> Optional[Reply]:
        """
        Reply to a command message; anything that is not a command is ignored.
        """
        if not message.is_command:
            return None

        log = CommandLogger(logger, {"chat_id": message.chat.id, "msg_id": message.message_id})
        text = await self.run_command(
            message.command, message.command_arguments, message.message_id, log
        )
        return Reply(
            chat_id=message.chat.id,
            text=text,
            reply_to_message_id=message.message_id,
        )

    async def run_command(
        self,
        command: str,
        arguments: str,
        message_id: int,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> str:
        log = log or CommandLogger(logger, {"chat_id": None, "msg_id": message_id})
        chat_commands.labels(command=command if command in KNOWN_COMMANDS else "unknown").inc()

        if command == "info":
            return await self._info(arguments, message_id, log)
        if command == "stat":
            return await self._stat(log)
        if command == "start":
            return START_TEXT
        if command == "help":
            return HELP_TEXT
        return UNKNOWN_COMMAND_TEXT

    async def _info(self, city_name: str, message_id: int, log: logging.LoggerAdapter) -> str:
        if not is_valid_city_name(city_name):
            log.info("cmd=info invalid name %r", city_name)
            return "invalid city, try again"

        try:
            forecast = await self.pipeline.forecast(city_name)
        except CityNotFound as exc:
            log.error("cmd=info %s", exc)
            return "unknown city, try again"
        except (ExternalProviderError, CorruptedCall) as exc:
            log.error("cmd=info %s", exc)
            return "forecast error, try again"
        except Exception as exc:
            log.error("cmd=info unexpected error: %r", exc)
            return "internal error, try again"
        log.debug("forecast respond %s", forecast.model_dump())

        try:
            await self.store.insert(ForecastRecord.from_result(message_id, city_name, forecast))
        except Exception as exc:
            # The user still gets the forecast; only the history misses it.
            log.error("cmd=info store forecast: %r", exc)

        return format_forecast(forecast)

    async def _stat(self, log: logging.LoggerAdapter) -> str:
        try:
            stat = await self.store.stat()
        except NoData:
            log.info("cmd=stat no data")
            return "no stat data"
        except Exception as exc:
            log.error("cmd=stat %r", exc)
            return "could not stat, try again"
        log.debug("collected stat %s", stat.model_dump())
        return format_statistics(stat)
