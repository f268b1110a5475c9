from prometheus_client import Counter, Gauge

forecast_requests = Counter(
    "forecast_requests_total", "Total forecast requests accepted by the pipeline."
)
forecast_failures = Counter(
    "forecast_failures_total", "Total forecast requests that ended in an error.", ["kind"]
)
pipeline_queue_size = Gauge(
    "forecast_pipeline_queue_size", "Forecast requests waiting for the pipeline worker."
)
forecasts_stored = Counter("forecasts_stored_total", "Total forecast records inserted.")
store_failures = Counter(
    "store_failures_total", "Total failed forecast store operations.", ["op"]
)
chat_commands = Counter(
    "chat_commands_total", "Total chat commands handled.", ["command"]
)
