"""Error taxonomy shared by the forecast client, the pipeline and the store."""


class WeatherBotError(Exception):
    """Base class for every error raised by the bot core."""


class ForecastError(WeatherBotError):
    """Raised when a forecast could not be produced."""


class CityNotFound(ForecastError):
    """The provider does not know the requested city (HTTP 404)."""


class ExternalProviderError(ForecastError):
    """The provider rejected or failed the request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CorruptedCall(ForecastError):
    """The call never produced an HTTP response (connect, read or timeout failure)."""


class DecodeError(ForecastError):
    """The provider answered with a payload that does not match the expected shape."""


class PipelineClosed(ForecastError):
    """The forecast pipeline no longer accepts requests."""


class StorageError(WeatherBotError):
    """Raised by the forecast store."""


class NoData(StorageError):
    """There are no stored forecasts to aggregate."""


class TransactionError(StorageError):
    """A transaction could not be started, committed or rolled back."""


class ValidationError(StorageError):
    """A forecast record violates the storage invariants."""
