# services/kafka_service.py
from kafka import KafkaProducer, KafkaConsumer
from kafka.errors import KafkaError as KafkaLibError, NoBrokersAvailable
import logging
import threading
import time
from typing import Any, Callable, List, Optional
from models.data_record import MessageRequest, PublishResult
from models.user import User
from utils.error_handler import KafkaError
from utils.serializers import get_serializer, get_deserializer, lenient, to_json_bytes
from utils.settings import Settings
import backoff

logger = logging.getLogger("kafka_gateway.kafka")


class KafkaClient:
    """Owns the shared KafkaProducer used by every producer service"""

    def __init__(self, settings: Settings, producer_factory: Optional[Callable[..., Any]] = None):
        self.settings = settings
        self.producer_factory = producer_factory or KafkaProducer
        self.producer = None
        self._lock = threading.Lock()

    def _initialize_producer(self):
        """Create the Kafka producer, retried with exponential backoff while no broker answers"""
        key_serializer = get_serializer(self.settings.key_serializer)
        value_serializer = get_serializer(self.settings.value_serializer)

        @backoff.on_exception(
            backoff.expo,
            NoBrokersAvailable,
            max_tries=self.settings.kafka_connect_max_tries,
            on_backoff=lambda details: logger.warning(
                f"No Kafka broker available at {self.settings.kafka_brokers}, "
                f"retrying in {details['wait']:.1f}s (attempt {details['tries']})"
            )
        )
        def create():
            return self.producer_factory(
                bootstrap_servers=self.settings.kafka_brokers,
                client_id=self.settings.kafka_client_id,
                key_serializer=key_serializer,
                value_serializer=value_serializer,
                acks=self.settings.kafka_acks,
            )

        return create()

    def connect(self):
        """Return the producer, creating it on first use"""
        with self._lock:
            if self.producer is not None:
                return self.producer
            try:
                self.producer = self._initialize_producer()
            except NoBrokersAvailable as e:
                logger.error(f"Failed to initialize Kafka producer: {str(e)}")
                raise KafkaError(
                    f"Failed to initialize Kafka connection: {str(e)}",
                    details={"bootstrap_servers": self.settings.kafka_brokers}
                ) from e
            logger.info(f"Kafka producer initialized to {self.settings.kafka_brokers}")
            return self.producer

    def is_connected(self) -> bool:
        """Check whether the producer is connected to a bootstrap broker"""
        if self.producer is None:
            return False
        # bootstrap_connected can raise while the client is closing
        try:
            return bool(self.producer.bootstrap_connected())
        except Exception as e:
            logger.debug(f"Kafka connection probe failed: {str(e)}")
            return False

    def send(self, topic: str, value: Any, key: Optional[str] = None) -> PublishResult:
        """Publish one record and wait for the broker acknowledgment"""
        producer = self.connect()
        try:
            # Exactly one send; a failure here is reported, never retried
            future = producer.send(topic, key=key, value=value)
            record_metadata = future.get(timeout=self.settings.kafka_send_timeout)
        except KafkaLibError as e:
            logger.error(f"Error sending message to {topic}: {str(e)}", exc_info=True)
            raise KafkaError(f"Failed to send message to {topic}: {str(e)}", details={"topic": topic}) from e

        logger.info(
            f"Message sent to {topic} [partition: {record_metadata.partition}, offset: {record_metadata.offset}]",
            extra={"topic": topic, "partition": record_metadata.partition, "offset": record_metadata.offset}
        )
        return PublishResult(
            topic=record_metadata.topic,
            partition=record_metadata.partition,
            offset=record_metadata.offset
        )

    def close(self):
        with self._lock:
            if self.producer is None:
                return
            try:
                # Deliver anything still buffered before closing
                self.producer.flush()
                self.producer.close()
                logger.info("Kafka producer closed")
            except KafkaLibError as e:
                logger.error(f"Error closing Kafka producer: {str(e)}")
            finally:
                self.producer = None


class MessageProducer:
    def __init__(self, client: KafkaClient, topic: str):
        self.client = client
        self.topic = topic

    def send_message(self, message: str) -> PublishResult:
        logger.info(f"Sending message: {message}")
        return self.client.send(self.topic, message)


class JsonMessageProducer:
    def __init__(self, client: KafkaClient, topic: str):
        self.client = client
        self.topic = topic

    def send_message(self, user: User) -> PublishResult:
        # Encoded here so the topic carries JSON whatever KAFKA_VALUE_SERIALIZER says
        result = self.client.send(self.topic, to_json_bytes(user.model_dump()))
        logger.info(f"Message sent: {user}")
        return result


class TopicMessageProducer:
    """Publishes a MessageRequest to the topic it names, key and payload untouched"""

    def __init__(self, client: KafkaClient):
        self.client = client

    def send_message(self, request: MessageRequest) -> PublishResult:
        logger.info(f"Sending message to {request.topic} with key {request.key}")
        return self.client.send(request.topic, request.message, key=request.key)


class MessageConsumer:
    def __init__(
        self,
        settings: Settings,
        topics: List[str],
        consumer_factory: Optional[Callable[..., Any]] = None,
        retry_delay: float = 30,
        reconnect_delay: float = 5
    ):
        self.settings = settings
        self.topics = topics
        self.consumer_factory = consumer_factory or KafkaConsumer
        self.retry_delay = retry_delay
        self.reconnect_delay = reconnect_delay
        self.running = False
        self.consumer = None
        self.consumer_thread = None
        self._retry_timer = None

    def _initialize_consumer(self) -> bool:
        """Initialize the Kafka consumer"""
        try:
            self.consumer = self.consumer_factory(
                *self.topics,
                bootstrap_servers=self.settings.kafka_brokers,
                client_id=self.settings.kafka_client_id,
                group_id=self.settings.group_id,
                key_deserializer=lenient(get_deserializer(self.settings.key_deserializer)),
                value_deserializer=lenient(get_deserializer(self.settings.value_deserializer)),
                auto_offset_reset=self.settings.auto_offset_reset,
                enable_auto_commit=True,
                # Lets the iterator return so the running flag is re-checked
                consumer_timeout_ms=1000
            )
            logger.info(f"Kafka consumer initialized for topics {self.topics} (group {self.settings.group_id})")
            return True
        except KafkaLibError as e:
            logger.error(f"Failed to initialize Kafka consumer: {str(e)}", exc_info=True)
            return False

    def start(self):
        """Start the Kafka consumer in a background thread"""
        if self.running:
            logger.info("Consumer is already running")
            return

        if not self._initialize_consumer():
            logger.info(f"Scheduling consumer reconnect in {self.retry_delay} seconds")
            self._retry_timer = threading.Timer(self.retry_delay, self.start)
            self._retry_timer.daemon = True
            self._retry_timer.start()
            return

        self.running = True
        self.consumer_thread = threading.Thread(target=self._consume, daemon=True)
        self.consumer_thread.start()
        logger.info(f"Kafka consumer started for topics {self.topics}")

    def stop(self, timeout: Optional[float] = 5):
        """Stop the consumer and wait for its thread to finish"""
        self.running = False
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None
        if self.consumer_thread is not None and self.consumer_thread is not threading.current_thread():
            self.consumer_thread.join(timeout)
            self.consumer_thread = None

    def handle_message(self, message):
        logger.info(
            f"Message received from {message.topic} [partition: {message.partition}, offset: {message.offset}] "
            f"key={message.key}: {message.value}",
            extra={"topic": message.topic, "partition": message.partition, "offset": message.offset}
        )

    def _consume(self):
        try:
            while self.running:
                try:
                    # Returns after consumer_timeout_ms without records
                    for message in self.consumer:
                        if not self.running:
                            break
                        try:
                            self.handle_message(message)
                        except Exception as e:
                            logger.error(f"Error processing message from {message.topic}: {str(e)}", exc_info=True)

                except KafkaLibError as e:
                    logger.error(f"Error in Kafka consumer: {str(e)}", exc_info=True)

                    if not self.running:
                        break

                    # Rebuild the consumer from scratch
                    self._close_consumer()
                    time.sleep(self.reconnect_delay)

                    if not self._initialize_consumer():
                        logger.critical("Failed to reinitialize consumer, exiting consumer loop")
                        break

                except Exception as e:
                    # Raised from inside iteration; the consumer resumes from its current position
                    logger.error(f"Unexpected error while polling {self.topics}: {str(e)}", exc_info=True)
                    if self.running:
                        time.sleep(self.reconnect_delay)
        finally:
            self.running = False
            self._close_consumer()

    def _close_consumer(self):
        if self.consumer is None:
            return
        try:
            self.consumer.close()
            logger.info("Kafka consumer closed")
        except KafkaLibError as e:
            logger.error(f"Error closing Kafka consumer: {str(e)}")
        finally:
            self.consumer = None
