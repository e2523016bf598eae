# ride_dispatch/config/loader.py
"""
Загрузчик конфигурации движка диспетчеризации.
Единственный источник истины: config/config.json.
Секретные данные переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


CONFIG_PATH_ENV = "RIDE_DISPATCH_CONFIG"


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации (можно переопределить через RIDE_DISPATCH_CONFIG)."""
    override = os.getenv(CONFIG_PATH_ENV)
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """
    Загружает config.json и возвращает словарь.

    Явно указанный через окружение файл обязан существовать.
    Если отсутствует файл по умолчанию, используются встроенные значения.
    """
    config_path = get_config_path()
    if not config_path.exists():
        if os.getenv(CONFIG_PATH_ENV):
            raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "ride_dispatch"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/ride_dispatch.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "ride_dispatch"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "dispatch"
    REDIS_MAX_CONNECTIONS: int = 50

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "dispatch.events"

    @field_validator("RABBITMQ_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        env_pass = os.getenv("RABBITMQ_PASSWORD", "")
        if env_pass:
            return env_pass
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class StorageSettings(BaseModel):
    """Выбор бэкендов хранения и доставки событий."""
    STORAGE_BACKEND: str = "memory"
    PRICING_STORE: str = "memory"
    EVENT_SINK: str = "memory"
    EVENT_BUFFER_SIZE: int = 1000

    @field_validator("STORAGE_BACKEND")
    @classmethod
    def check_storage(cls, v: str) -> str:
        if v not in ("memory", "postgres"):
            raise ValueError(f"Unsupported storage backend: {v}")
        return v

    @field_validator("PRICING_STORE")
    @classmethod
    def check_pricing_store(cls, v: str) -> str:
        if v not in ("memory", "redis"):
            raise ValueError(f"Unsupported pricing store: {v}")
        return v

    @field_validator("EVENT_SINK")
    @classmethod
    def check_event_sink(cls, v: str) -> str:
        if v not in ("memory", "rabbitmq"):
            raise ValueError(f"Unsupported event sink: {v}")
        return v


class FareSettings(BaseModel):
    """Настройки тарифов (оценка стоимости поездки)."""
    PER_KM_BASE: float = 1.2
    PER_MIN_BASE: float = 0.2
    FLAG_DROP_BASE: float = 3.0
    MIN_FARE: float = 5.0
    VEHICLE_MULTIPLIERS: dict[str, float] = Field(
        default_factory=lambda: {"sedan": 0.8, "suv": 1.0, "van": 1.1, "luxury": 1.5}
    )
    AVERAGE_SPEED_KMH: float = 30.0


class PricingSettings(BaseModel):
    """Настройки распределения стоимости между водителем и платформой."""
    DRIVER_PER_KM: float = 1.0
    PLATFORM_FEE_PERCENT: float = 3.0
    CURRENCY: str = "EUR"
    TAX_RATE: float = 0.18
    PAYMENT_FEE_RATE: float = 0.02
    PRICING_CACHE_KEY: str = "pricing:config"


class SearchSettings(BaseModel):
    """Настройки поиска водителей."""
    MAX_CANDIDATES: int = 10
    ETA_MINUTES_PER_KM: float = 3.0
    MIN_ETA_MINUTES: int = 3


class NegotiationSettings(BaseModel):
    """Настройки сессии согласования цены."""
    SESSION_TIMEOUT_SECONDS: float = 30.0
    COUNTER_OFFER_POLICY: str = "minimum_price"
    MIN_ACCEPTABLE_RATIO: float = 0.9
    RANDOM_ACCEPT_PROBABILITY: float = 0.5
    RANDOM_SEED: int | None = None
    COUNTER_SUGGESTION_RATIO: float = 0.9
    CLOSED_SESSION_RETENTION_SECONDS: float = 300.0


class BookingSettings(BaseModel):
    """Настройки бронирований."""
    RESERVATION_CODE_LENGTH: int = 8
    RESERVATION_CODE_ATTEMPTS: int = 10
    DEFAULT_PAYMENT_METHOD: str = "card"


class TimeoutSettings(BaseModel):
    """Настройки таймаутов."""
    RIDE_REQUEST_TTL_SECONDS: int = 600


class PaymentSettings(BaseModel):
    """Настройки платёжного шлюза."""
    PAYMENT_GATEWAY_URL: str = ""
    PAYMENT_GATEWAY_API_KEY: str = ""
    PAYMENT_GATEWAY_TIMEOUT: float = 10.0

    @field_validator("PAYMENT_GATEWAY_API_KEY", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает API ключ из переменных окружения."""
        if not v:
            return os.getenv("PAYMENT_GATEWAY_API_KEY", "")
        return v


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек движка.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    fares: FareSettings = Field(default_factory=FareSettings)
    pricing: PricingSettings = Field(default_factory=PricingSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    negotiation: NegotiationSettings = Field(default_factory=NegotiationSettings)
    bookings: BookingSettings = Field(default_factory=BookingSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    payments: PaymentSettings = Field(default_factory=PaymentSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты и адреса инфраструктуры переопределяются из переменных окружения.
        """
        config_data = load_config_json()

        # Фильтруем комментарии (ключи, начинающиеся с _comment_)
        filtered_data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        return cls(
            system=SystemSettings(
                PROJECT_NAME=filtered_data.get("PROJECT_NAME", "ride_dispatch"),
                VERSION=filtered_data.get("VERSION", "1.0.0"),
                DEBUG=filtered_data.get("DEBUG", True),
                ENVIRONMENT=os.getenv("ENVIRONMENT", filtered_data.get("ENVIRONMENT", "development")),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=os.getenv("LOG_LEVEL", filtered_data.get("LOG_LEVEL", "DEBUG")),
                LOG_TO_FILE=filtered_data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=filtered_data.get("LOG_FILE_PATH", "logs/ride_dispatch.log"),
                LOG_FORMAT=filtered_data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=filtered_data.get("LOG_MAX_BYTES", 10485760),
            ),
            database=DatabaseSettings(
                DB_HOST=os.getenv("DB_HOST", filtered_data.get("DB_HOST", "localhost")),
                DB_PORT=int(os.getenv("DB_PORT", filtered_data.get("DB_PORT", 5432))),
                DB_NAME=os.getenv("DB_NAME", filtered_data.get("DB_NAME", "ride_dispatch")),
                DB_USER=os.getenv("DB_USER", filtered_data.get("DB_USER", "postgres")),
                DB_PASSWORD=os.getenv("DB_PASSWORD", filtered_data.get("DB_PASSWORD", "")),
                DB_MIN_POOL_SIZE=filtered_data.get("DB_MIN_POOL_SIZE", 5),
                DB_MAX_POOL_SIZE=filtered_data.get("DB_MAX_POOL_SIZE", 20),
                DB_COMMAND_TIMEOUT=filtered_data.get("DB_COMMAND_TIMEOUT", 60),
                DB_RETRY_ATTEMPTS=filtered_data.get("DB_RETRY_ATTEMPTS", 3),
                DB_RETRY_DELAY=filtered_data.get("DB_RETRY_DELAY", 1.0),
            ),
            redis=RedisSettings(
                REDIS_HOST=os.getenv("REDIS_HOST", filtered_data.get("REDIS_HOST", "localhost")),
                REDIS_PORT=int(os.getenv("REDIS_PORT", filtered_data.get("REDIS_PORT", 6379))),
                REDIS_DB=filtered_data.get("REDIS_DB", 0),
                REDIS_PASSWORD=os.getenv("REDIS_PASSWORD", filtered_data.get("REDIS_PASSWORD", "")),
                REDIS_NAMESPACE=filtered_data.get("REDIS_NAMESPACE", "dispatch"),
                REDIS_MAX_CONNECTIONS=filtered_data.get("REDIS_MAX_CONNECTIONS", 50),
            ),
            rabbitmq=RabbitMQSettings(
                RABBITMQ_HOST=os.getenv("RABBITMQ_HOST", filtered_data.get("RABBITMQ_HOST", "localhost")),
                RABBITMQ_PORT=int(os.getenv("RABBITMQ_PORT", filtered_data.get("RABBITMQ_PORT", 5672))),
                RABBITMQ_USER=os.getenv("RABBITMQ_USER", filtered_data.get("RABBITMQ_USER", "guest")),
                RABBITMQ_PASSWORD=os.getenv("RABBITMQ_PASSWORD", filtered_data.get("RABBITMQ_PASSWORD", "guest")),
                RABBITMQ_VHOST=filtered_data.get("RABBITMQ_VHOST", "/"),
                RABBITMQ_EXCHANGE=filtered_data.get("RABBITMQ_EXCHANGE", "dispatch.events"),
            ),
            storage=StorageSettings(
                STORAGE_BACKEND=os.getenv("STORAGE_BACKEND", filtered_data.get("STORAGE_BACKEND", "memory")),
                PRICING_STORE=os.getenv("PRICING_STORE", filtered_data.get("PRICING_STORE", "memory")),
                EVENT_SINK=os.getenv("EVENT_SINK", filtered_data.get("EVENT_SINK", "memory")),
                EVENT_BUFFER_SIZE=filtered_data.get("EVENT_BUFFER_SIZE", 1000),
            ),
            fares=FareSettings(
                PER_KM_BASE=filtered_data.get("PER_KM_BASE", 1.2),
                PER_MIN_BASE=filtered_data.get("PER_MIN_BASE", 0.2),
                FLAG_DROP_BASE=filtered_data.get("FLAG_DROP_BASE", 3.0),
                MIN_FARE=filtered_data.get("MIN_FARE", 5.0),
                VEHICLE_MULTIPLIERS=filtered_data.get(
                    "VEHICLE_MULTIPLIERS", {"sedan": 0.8, "suv": 1.0, "van": 1.1, "luxury": 1.5}
                ),
                AVERAGE_SPEED_KMH=filtered_data.get("AVERAGE_SPEED_KMH", 30.0),
            ),
            pricing=PricingSettings(
                DRIVER_PER_KM=filtered_data.get("DRIVER_PER_KM", 1.0),
                PLATFORM_FEE_PERCENT=filtered_data.get("PLATFORM_FEE_PERCENT", 3.0),
                CURRENCY=filtered_data.get("CURRENCY", "EUR"),
                TAX_RATE=filtered_data.get("TAX_RATE", 0.18),
                PAYMENT_FEE_RATE=filtered_data.get("PAYMENT_FEE_RATE", 0.02),
                PRICING_CACHE_KEY=filtered_data.get("PRICING_CACHE_KEY", "pricing:config"),
            ),
            search=SearchSettings(
                MAX_CANDIDATES=filtered_data.get("MAX_CANDIDATES", 10),
                ETA_MINUTES_PER_KM=filtered_data.get("ETA_MINUTES_PER_KM", 3.0),
                MIN_ETA_MINUTES=filtered_data.get("MIN_ETA_MINUTES", 3),
            ),
            negotiation=NegotiationSettings(
                SESSION_TIMEOUT_SECONDS=filtered_data.get("SESSION_TIMEOUT_SECONDS", 30.0),
                COUNTER_OFFER_POLICY=filtered_data.get("COUNTER_OFFER_POLICY", "minimum_price"),
                MIN_ACCEPTABLE_RATIO=filtered_data.get("MIN_ACCEPTABLE_RATIO", 0.9),
                RANDOM_ACCEPT_PROBABILITY=filtered_data.get("RANDOM_ACCEPT_PROBABILITY", 0.5),
                RANDOM_SEED=filtered_data.get("RANDOM_SEED"),
                COUNTER_SUGGESTION_RATIO=filtered_data.get("COUNTER_SUGGESTION_RATIO", 0.9),
                CLOSED_SESSION_RETENTION_SECONDS=filtered_data.get("CLOSED_SESSION_RETENTION_SECONDS", 300.0),
            ),
            bookings=BookingSettings(
                RESERVATION_CODE_LENGTH=filtered_data.get("RESERVATION_CODE_LENGTH", 8),
                RESERVATION_CODE_ATTEMPTS=filtered_data.get("RESERVATION_CODE_ATTEMPTS", 10),
                DEFAULT_PAYMENT_METHOD=filtered_data.get("DEFAULT_PAYMENT_METHOD", "card"),
            ),
            timeouts=TimeoutSettings(
                RIDE_REQUEST_TTL_SECONDS=filtered_data.get("RIDE_REQUEST_TTL_SECONDS", 600),
            ),
            payments=PaymentSettings(
                PAYMENT_GATEWAY_URL=os.getenv("PAYMENT_GATEWAY_URL", filtered_data.get("PAYMENT_GATEWAY_URL", "")),
                PAYMENT_GATEWAY_API_KEY=os.getenv("PAYMENT_GATEWAY_API_KEY", filtered_data.get("PAYMENT_GATEWAY_API_KEY", "")),
                PAYMENT_GATEWAY_TIMEOUT=filtered_data.get("PAYMENT_GATEWAY_TIMEOUT", 10.0),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    # Загружаем .env файл
    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
