from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "Farmwatch Control"
    timezone: str = "UTC"

    # Polling
    poll_seconds: float = 30.0

    # Hysteresis: minimum change that justifies a new advisory call
    hysteresis_temperature_c: float = 0.5
    hysteresis_humidity_pct: float = 2.0
    hysteresis_oxygen_pct: float = 2.0
    hysteresis_lux: float = 200.0

    # Sensor faults
    sensor_timeout_seconds: float = 5.0
    degraded_after_failures: int = 3

    # Recommendations
    recommendation_timeout_seconds: float = 20.0
    recommendation_retries: int = 1
    # Ask again after failed advice once this many ticks pass (0 = only on change)
    recommendation_retry_ticks: int = 10

    # Actuator writes
    actuator_timeout_seconds: float = 5.0
    actuator_retries: int = 1
    actuator_retry_backoff_seconds: float = 1.0
    actuator_confirm_reads: bool = True  # read back after write to confirm

    # Observer ring buffer (288 x 30s = 2.4h)
    history_size: int = 288

    # Modes: "sim" for development
    sensor_mode: str = "sim"      # sim | http | rs485
    actuator_mode: str = "sim"    # sim | http
    advisor_mode: str = "sim"     # sim | llm

    # HTTP providers
    sensor_url: str = "http://127.0.0.1:8081/sensors"
    actuator_url: str = "http://127.0.0.1:8082"

    # Language model (OpenAI-compatible chat completions)
    llm_base_url: str = "https://api.openai.com/v1"
    llm_api_key: str = Field(default="")
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.2

    # RS485 / Modbus RTU
    rs485_port: str = "/dev/ttyUSB0"      # Windows example: "COM3"
    rs485_baudrate: int = 9600
    rs485_slave_id: int = 1
    rs485_functioncode: int = 3           # 3=holding, 4=input
    rs485_first_register: int = 0         # temp, humidity, oxygen, lux (lux spans 2 registers)
    rs485_temperature_scale: float = 0.1
    rs485_humidity_scale: float = 0.1
    rs485_oxygen_scale: float = 0.1
    rs485_lux_scale: float = 1.0

    # Logging
    log_file: str = "farmwatch.log"


settings = Settings()
