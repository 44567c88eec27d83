"""Pub/sub publishing of pipeline events."""

import logging
from typing import Callable
from pubsub import pub

from ..models.events import FragmentEvent, SessionEvent, ErrorEvent
from ..models.transcription import DispatchResult

logger = logging.getLogger(__name__)

FRAGMENT_TOPIC = "earpiece.fragment"
DISPATCH_TOPIC = "earpiece.dispatch"
SESSION_TOPIC = "earpiece.session"
ERROR_TOPIC = "earpiece.error"


class PipelinePublisher:
    """Publishes pipeline events using pubsub.pub.

    Every message is sent with a single ``event`` keyword argument, so listeners
    are written as ``def listener(event): ...``.
    """

    def __init__(self, topic_prefix: str = "earpiece"):
        """Initialize pipeline publisher.

        Args:
            topic_prefix: Root of the topic tree, replaced in tests to isolate listeners
        """
        self.fragment_topic = FRAGMENT_TOPIC.replace("earpiece", topic_prefix, 1)
        self.dispatch_topic = DISPATCH_TOPIC.replace("earpiece", topic_prefix, 1)
        self.session_topic = SESSION_TOPIC.replace("earpiece", topic_prefix, 1)
        self.error_topic = ERROR_TOPIC.replace("earpiece", topic_prefix, 1)
        logger.info(f"PipelinePublisher initialized with topic prefix: {topic_prefix}")

    def publish_fragment(self, event: FragmentEvent) -> None:
        pub.sendMessage(self.fragment_topic, event=event)
        logger.debug(f"Published fragment {event.fragment.fragment_id} ({event.mode})")

    def publish_dispatch(self, result: DispatchResult) -> None:
        pub.sendMessage(self.dispatch_topic, event=result)
        logger.debug(f"Published dispatch for session {result.session_id} ({result.fragment_count} fragments)")

    def publish_session(self, event: SessionEvent) -> None:
        pub.sendMessage(self.session_topic, event=event)
        logger.debug(f"Published session event {event.event_type} for {event.session_id}")

    def publish_error(self, event: ErrorEvent) -> None:
        pub.sendMessage(self.error_topic, event=event)
        logger.debug(f"Published error {event.code} for session {event.session_id}")

    def subscribe(self, topic: str, listener: Callable) -> None:
        """Subscribe ``listener(event)`` to one of this publisher's topics."""
        pub.subscribe(listener, topic)

    def unsubscribe(self, topic: str, listener: Callable) -> None:
        pub.unsubscribe(listener, topic)
