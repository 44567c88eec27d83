"""Coaching collaborators that receive transcribed text and answer with advice."""

import asyncio
import logging
import threading
from typing import Dict, List, Optional, Protocol

import aiohttp

from ..errors import CoachingError
from ..models.audio import RecordingSource

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a discreet interview coach. You receive live transcripts of a job interview "
    "and reply with short, concrete suggestions the candidate can use right away."
)

# How a transcript is framed depends on who was speaking
INTERVIEWER_QUESTION_PROMPT = (
    "The interviewer just said:\n\"{transcript}\"\n\n"
    "Identify the question being asked and suggest the key points of a strong answer."
)
INTERVIEWEE_RESPONSE_PROMPT = (
    "The candidate just answered:\n\"{transcript}\"\n\n"
    "Give brief feedback on the answer and one thing to add or improve."
)
GENERAL_TRANSCRIPT_PROMPT = (
    "Here is the latest part of the interview conversation:\n\"{transcript}\"\n\n"
    "Give brief coaching on how the candidate should continue."
)


def build_coaching_request(text: str, source_hint: Optional[RecordingSource]) -> str:
    """Frame a transcript for the chat model according to who was speaking."""
    if source_hint is RecordingSource.SYSTEM or source_hint is RecordingSource.INTERVIEWER:
        template = INTERVIEWER_QUESTION_PROMPT
    elif source_hint is RecordingSource.INTERVIEWEE:
        template = INTERVIEWEE_RESPONSE_PROMPT
    else:
        template = GENERAL_TRANSCRIPT_PROMPT
    return template.format(transcript=text)


class CoachingCollaborator(Protocol):
    """Anything that turns a transcript into a coaching reply."""

    def submit(self, session_id: str, text: str, source_hint: Optional[RecordingSource]) -> str:
        """Send transcribed text and return the reply."""
        ...


class EchoCoach:
    """Offline collaborator used when no chat API is configured."""

    def __init__(self):
        self.submissions: List[tuple] = []

    def submit(self, session_id: str, text: str, source_hint: Optional[RecordingSource]) -> str:
        self.submissions.append((session_id, text, source_hint))
        return (f"I heard: \"{text}\". This seems like a good point! "
                f"(Configure an API key for AI-powered coaching)")


class ChatCompletionsCoach:
    """OpenAI-compatible chat-completions client that keeps a short history per session."""

    def __init__(self,
                 api_key: str,
                 model: str = "gpt-4o-mini",
                 base_url: str = "https://api.openai.com/v1/chat/completions",
                 timeout: float = 30.0,
                 history_limit: int = 20):
        """Initialize chat coach.

        Args:
            api_key: API key sent as a bearer token
            model: Chat model name
            base_url: Full URL of the chat completions endpoint
            timeout: Seconds one request may take
            history_limit: Messages of earlier conversation sent with each request
        """
        if not api_key:
            raise ValueError("API key is required for ChatCompletionsCoach")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.history_limit = history_limit
        self._history: Dict[str, List[Dict[str, str]]] = {}
        self._lock = threading.Lock()

        logger.info(f"ChatCompletionsCoach initialized with model: {model}")

    def _messages(self, session_id: str, request: str) -> List[Dict[str, str]]:
        with self._lock:
            history = list(self._history.get(session_id, []))[-self.history_limit:]
        return [{"role": "system", "content": SYSTEM_PROMPT}] + history + [{"role": "user", "content": request}]

    def _remember(self, session_id: str, request: str, reply: str) -> None:
        with self._lock:
            history = self._history.setdefault(session_id, [])
            history.append({"role": "user", "content": request})
            history.append({"role": "assistant", "content": reply})
            del history[:-self.history_limit]

    def forget(self, session_id: str) -> None:
        with self._lock:
            self._history.pop(session_id, None)

    async def send_messages(self, messages: List[Dict[str, str]], temperature: float = 0.7,
                            max_tokens: int = 500) -> str:
        """Send a conversation to the chat endpoint and return the reply text.

        Raises:
            CoachingError: the request failed or the response was malformed
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        data = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens
        }

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.base_url, headers=headers, json=data) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise CoachingError(f"Chat API error: {response.status} - {error_text[:200]}")
                result = await response.json()

        try:
            return result["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError) as e:
            raise CoachingError(f"Malformed chat API response: {e}") from e

    def submit(self, session_id: str, text: str, source_hint: Optional[RecordingSource]) -> str:
        request = build_coaching_request(text, source_hint)
        messages = self._messages(session_id, request)

        # Called from worker threads that have no running loop
        loop = asyncio.new_event_loop()
        try:
            reply = loop.run_until_complete(self.send_messages(messages))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CoachingError(f"Chat API request failed: {e}", session_id) from e
        finally:
            loop.close()

        self._remember(session_id, request, reply)
        logger.debug(f"Coaching reply for session {session_id}: {reply[:80]}")
        return reply


def create_coach(config) -> CoachingCollaborator:
    """Chat coach when an API key is configured, otherwise the echo coach."""
    api_key = config.get('coaching.api_key')
    if not api_key:
        logger.warning("No coaching API key configured, using offline echo coach")
        return EchoCoach()
    return ChatCompletionsCoach(
        api_key=api_key,
        model=config.get('coaching.model', 'gpt-4o-mini'),
        base_url=config.get('coaching.base_url'),
        timeout=config.get_float('coaching.timeout_seconds'),
    )
