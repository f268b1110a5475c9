import argparse
import asyncio
import logging

from .config import get_settings
from .db import close_pool, create_pool, migrate
from .dispatcher import Dispatcher
from .forecast import OpenWeatherClient
from .pipeline import ForecastPipeline
from .storage import ForecastStore


async def run(command: str, arguments: str, message_id: int) -> str:
    settings = get_settings()
    db_pool = await create_pool(settings)
    try:
        await migrate(db_pool)
        async with OpenWeatherClient(
            settings.openweathermap_api_token,
            base_url=settings.forecast_base_url,
            timeout=settings.forecast_timeout_seconds,
        ) as weather_client:
            async with ForecastPipeline(weather_client) as pipeline:
                dispatcher = Dispatcher(pipeline, ForecastStore(db_pool))
                return await dispatcher.run_command(command, arguments, message_id)
    finally:
        await close_pool(db_pool)


def main():
    parser = argparse.ArgumentParser(
        description="Run one bot command locally and print the reply."
    )
    parser.add_argument("command", help="Command name without the slash, e.g. info or stat")
    parser.add_argument("arguments", nargs="*", help="Command arguments, e.g. a city name")
    parser.add_argument(
        "--message-id", type=int, default=0, help="Message id stored with the forecast"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else get_settings().log_level.upper())

    reply = asyncio.run(run(args.command.lstrip("/"), " ".join(args.arguments), args.message_id))
    print(reply)


if __name__ == "__main__":
    main()
