# services/monitoring_service.py
from datetime import datetime, timezone
from typing import Optional
from services.kafka_service import KafkaClient
import logging

logger = logging.getLogger("kafka_gateway.monitoring")

CONNECTED = "connected"
DISCONNECTED = "disconnected"
UNKNOWN = "unknown"

class BrokerMonitor:
    def __init__(self, client: KafkaClient):
        self.client = client
        self.status = UNKNOWN
        self.last_checked: Optional[datetime] = None

    def check_broker(self) -> str:
        """
        Probe the producer's bootstrap connection and record the result.
        Runs as a scheduled job, so probe failures are recorded rather than raised.
        """
        previous = self.status
        # Only transitions are worth an INFO/WARNING line
        try:
            connected = self.client.is_connected()
        except Exception as e:
            logger.error(f"Error checking Kafka broker: {str(e)}", exc_info=True)
            connected = False

        self.status = CONNECTED if connected else DISCONNECTED
        self.last_checked = datetime.now(timezone.utc)

        if self.status != previous:
            if self.status == CONNECTED:
                logger.info(f"Kafka broker reachable at {self.client.settings.kafka_brokers}")
            else:
                logger.warning(f"Kafka broker unreachable at {self.client.settings.kafka_brokers}")
        else:
            logger.debug(f"Kafka broker status unchanged: {self.status}")

        return self.status

    def snapshot(self) -> dict:
        return {
            "status": self.status,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
        }
