# utils/settings.py
import os
from typing import List, Optional
from pydantic import BaseModel

DEFAULT_TOPIC = "test-topic"
DEFAULT_JSON_TOPIC = "test-json-topic"


class Settings(BaseModel):
    kafka_brokers: List[str] = ["localhost:9092"]
    kafka_client_id: str = "kafka-gateway"
    kafka_acks: str = "all"
    kafka_send_timeout: float = 10
    kafka_connect_max_tries: int = 3

    key_serializer: str = "string"
    value_serializer: str = "json"
    key_deserializer: str = "string"
    value_deserializer: str = "json"

    group_id: str = "myGroup"
    auto_offset_reset: str = "earliest"
    consumer_enabled: bool = False

    topic: str = DEFAULT_TOPIC
    json_topic: str = DEFAULT_JSON_TOPIC

    broker_check_interval: int = 30

    port: int = 8080
    log_level: str = "INFO"
    log_dir: Optional[str] = None


def load_settings() -> Settings:
    """Build settings from environment variables, falling back to defaults"""
    return Settings(
        kafka_brokers=[b.strip() for b in os.getenv("KAFKA_BROKERS", "localhost:9092").split(",") if b.strip()],
        kafka_client_id=os.getenv("KAFKA_CLIENT_ID", "kafka-gateway"),
        kafka_acks=os.getenv("KAFKA_ACKS", "all"),
        kafka_send_timeout=float(os.getenv("KAFKA_SEND_TIMEOUT", "10")),
        kafka_connect_max_tries=int(os.getenv("KAFKA_CONNECT_MAX_TRIES", "3")),
        key_serializer=os.getenv("KAFKA_KEY_SERIALIZER", "string"),
        value_serializer=os.getenv("KAFKA_VALUE_SERIALIZER", "json"),
        key_deserializer=os.getenv("KAFKA_KEY_DESERIALIZER", "string"),
        value_deserializer=os.getenv("KAFKA_VALUE_DESERIALIZER", "json"),
        group_id=os.getenv("KAFKA_GROUP_ID", "myGroup"),
        auto_offset_reset=os.getenv("KAFKA_AUTO_OFFSET_RESET", "earliest"),
        consumer_enabled=os.getenv("KAFKA_CONSUMER_ENABLED", "false"),
        topic=os.getenv("KAFKA_TOPIC", DEFAULT_TOPIC),
        json_topic=os.getenv("KAFKA_JSON_TOPIC", DEFAULT_JSON_TOPIC),
        broker_check_interval=int(os.getenv("BROKER_CHECK_INTERVAL", "30")),
        port=int(os.getenv("PORT", "8080")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR") or None,
    )
