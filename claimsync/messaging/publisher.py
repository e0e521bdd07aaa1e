"""
Event publisher for claim lifecycle announcements.

Messages are fire-and-forget from the sync core's point of view: delivery is
at-least-once and no acknowledgment is tracked.

Backends:
- memory (tests)
- ndjson (append-only journal file, local dev)
- http (webhook POST per message)
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel


logger = logging.getLogger(__name__)


class Topic:
    """Published topics."""
    # A claim was stored by the write path and its address is known
    CLAIM_ADDRESS_KNOWN = "claim.address_known"

    # A previously seen address was resolved into a claim
    CLAIM_RESOLVED = "claim.resolved"


class Message(BaseModel):
    """Envelope for a published payload."""
    message_id: str
    topic: str
    timestamp: datetime
    payload: Dict[str, Any]


def build_message(topic: str, payload: Dict[str, Any]) -> Message:
    return Message(
        message_id=str(uuid.uuid4()),
        topic=topic,
        timestamp=datetime.now(timezone.utc),
        payload=payload
    )


class EventPublisher:
    """Abstract base for publisher backends."""

    def publish(self, topic: str, payload: Dict[str, Any]) -> Message:
        """Publish payload on topic and return the sent envelope."""
        raise NotImplementedError

    def close(self):
        """Release backend resources."""
        pass


class MemoryPublisher(EventPublisher):
    """Keeps published messages in a list."""

    def __init__(self):
        self.messages: List[Message] = []

    def publish(self, topic: str, payload: Dict[str, Any]) -> Message:
        message = build_message(topic, payload)
        self.messages.append(message)
        return message

    def by_topic(self, topic: str) -> List[Message]:
        return [m for m in self.messages if m.topic == topic]


class NdjsonPublisher(EventPublisher):
    """Appends one JSON line per message to a journal file."""

    def __init__(self, events_dir: Optional[str] = None):
        """
        Initialize journal publisher.

        Args:
            events_dir: Directory for the journal (defaults to ~/.claimsync/events)
        """
        if events_dir:
            self.ndjson_path = Path(events_dir) / "messages.ndjson"
        else:
            self.ndjson_path = Path.home() / ".claimsync" / "events" / "messages.ndjson"

        self.ndjson_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.ndjson_path.exists():
            self.ndjson_path.touch()

    def publish(self, topic: str, payload: Dict[str, Any]) -> Message:
        message = build_message(topic, payload)
        with open(self.ndjson_path, 'a') as f:
            f.write(message.model_dump_json() + '\n')
        return message

    def get_messages(self, topic: Optional[str] = None, limit: Optional[int] = None) -> List[Message]:
        """
        Read messages back from the journal.

        Args:
            topic: Only return messages on this topic
            limit: Maximum number of messages to return

        Returns:
            Messages in publish order
        """
        messages = []
        with open(self.ndjson_path, 'r') as f:
            for line in f:
                if not line.strip():
                    continue

                message = Message(**json.loads(line))

                if topic and message.topic != topic:
                    continue

                messages.append(message)

                if limit and len(messages) >= limit:
                    break

        return messages


class HttpPublisher(EventPublisher):
    """
    POSTs each message to a webhook.

    Non-2xx responses raise, so the write path surfaces delivery failures to
    its caller and the read path counts them as a failed tick.
    """

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def publish(self, topic: str, payload: Dict[str, Any]) -> Message:
        message = build_message(topic, payload)
        response = self.client.post(self.url, content=message.model_dump_json(),
                                    headers={'Content-Type': 'application/json'})
        response.raise_for_status()
        logger.debug(f"Published {topic} message {message.message_id}")
        return message

    def close(self):
        self.client.close()


def build_publisher(backend: str = "ndjson", events_dir: Optional[str] = None, url: Optional[str] = None) -> EventPublisher:
    """
    Create a publisher for the configured backend.

    Args:
        backend: "memory", "ndjson" or "http"
        events_dir: Journal directory for the ndjson backend
        url: Webhook URL for the http backend
    """
    if backend == "memory":
        return MemoryPublisher()
    if backend == "ndjson":
        return NdjsonPublisher(events_dir=events_dir)
    if backend == "http":
        if not url:
            raise ValueError("url required for http publisher")
        return HttpPublisher(url=url)
    raise ValueError(f"Unknown publisher backend: {backend}")
