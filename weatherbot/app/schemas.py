from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OpenWeatherMain(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    temp: float
    feels_like: float
    humidity: int


class OpenWeatherCondition(BaseModel):
    description: str


class OpenWeatherWind(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    speed: float


class OpenWeatherCurrent(BaseModel):
    """
    Subset of https://openweathermap.org/current#current_JSON used by the bot.
    """

    main: OpenWeatherMain
    weather: List[OpenWeatherCondition] = Field(min_length=1)
    wind: OpenWeatherWind


class ForecastResult(BaseModel):
    made_at: datetime
    description: str
    temperature: float
    feels_like: float
    humidity: int
    wind_speed: float

    @classmethod
    def from_openweather(cls, payload: OpenWeatherCurrent, made_at: datetime) -> "ForecastResult":
        return cls(
            made_at=made_at,
            description=payload.weather[0].description,
            temperature=payload.main.temp,
            feels_like=payload.main.feels_like,
            humidity=payload.main.humidity,
            wind_speed=payload.wind.speed,
        )


class ForecastRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    message_id: int
    city: str
    description: str
    temperature: float
    humidity: int
    wind_speed: float
    made_at: datetime

    @classmethod
    def from_result(cls, message_id: int, city: str, result: ForecastResult) -> "ForecastRecord":
        return cls(
            message_id=message_id,
            city=city,
            description=result.description,
            temperature=result.temperature,
            humidity=result.humidity,
            wind_speed=result.wind_speed,
            made_at=result.made_at,
        )


class Metric(str, Enum):
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    WIND = "wind"


class RecordHolder(BaseModel):
    city: str
    value: float


class ForecastStatistics(BaseModel):
    total_records: int
    first_record_at: datetime
    record_holders: Dict[Metric, RecordHolder]


# Telegram Bot API objects, only the fields the bot reads.
# https://core.telegram.org/bots/api#available-types


class Chat(BaseModel):
    id: int


class MessageEntity(BaseModel):
    type: str
    offset: int
    length: int


class Message(BaseModel):
    message_id: int
    chat: Chat
    text: Optional[str] = None
    entities: List[MessageEntity] = Field(default_factory=list)

    @property
    def is_command(self) -> bool:
        if not self.text or not self.entities:
            return False
        entity = self.entities[0]
        return entity.offset == 0 and entity.type == "bot_command"

    @property
    def command(self) -> str:
        """
        Command name without the leading slash and the optional @botname suffix.
        """
        if not self.is_command:
            return ""
        name = self.text[1 : self.entities[0].length]
        return name.split("@", 1)[0]

    @property
    def command_arguments(self) -> str:
        if not self.is_command:
            return ""
        return self.text[self.entities[0].length :].strip()


class Update(BaseModel):
    update_id: int
    message: Optional[Message] = None


class Reply(BaseModel):
    chat_id: int
    text: str
    reply_to_message_id: Optional[int] = None
