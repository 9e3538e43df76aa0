#!/usr/bin/env python3
"""
Chat Engine - Prompt assembly and streaming generation against Ollama

The /api/generate endpoint answers with NDJSON: one JSON object per inference
step, one object per line. HTTP chunk boundaries are unrelated to line
boundaries, so NDJSONDecoder reassembles lines from raw bytes before decoding.
Framework-agnostic: output goes to a TextSink, never straight to a terminal.
"""

import json
import logging
from typing import Callable, Iterator, List, NamedTuple, Optional

import requests

from errors import DecodeError, NetworkError
from ollama_service import DEFAULT_MODEL_NAME, OLLAMA_BASE_URL
from session import SessionState
from system_facts import SystemFacts

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
RESPONSE_MARKER = "> "

SYSTEM_PREAMBLE = """You are a friendly command-line assistant. Keep your responses conversational and concise.
Use the provided system information (OS, shell, etc.) and session context (current directory, last command)
to give more relevant and accurate responses. Adapt your suggestions to the user's environment.
Don't use bullet points or lists unless specifically asked.
Only show example commands if they would be immediately useful.
Focus on being helpful while keeping responses brief and to the point."""

# Sent once after startup so the model is resident before the first question
PRELOAD_PROMPT = (
    "You are a command-line assistant. You help users understand and fix "
    "command-line issues. Keep responses concise and focused on command-line usage."
)


def build_prompt(facts: SystemFacts, session: SessionState, query: str) -> str:
    """Preamble, system facts, session state and the query, blank-line separated."""
    return "\n\n".join([
        SYSTEM_PREAMBLE,
        facts.render(),
        session.render(),
        f"User: {query}\nAssistant:",
    ])


# ── Stream records ─────────────────────────────────────────────────────────────

class GenerationStats(NamedTuple):
    """Performance counters Ollama attaches to the final record (durations in ns)."""
    total_duration: Optional[int] = None
    load_duration: Optional[int] = None
    prompt_eval_count: Optional[int] = None
    prompt_eval_duration: Optional[int] = None
    eval_count: Optional[int] = None
    eval_duration: Optional[int] = None
    context: Optional[List[int]] = None

    @property
    def tokens_per_second(self) -> Optional[float]:
        if not self.eval_count or not self.eval_duration:
            return None
        return self.eval_count / (self.eval_duration / 1e9)


_STAT_FIELDS = GenerationStats._fields


class StreamChunk(NamedTuple):
    response: str
    done: bool
    model: Optional[str] = None
    created_at: Optional[str] = None
    done_reason: Optional[str] = None
    stats: Optional[GenerationStats] = None

    @classmethod
    def from_json(cls, line: bytes) -> "StreamChunk":
        """Decode one NDJSON line. Unknown fields are ignored; counters are optional."""
        try:
            data = json.loads(line)
        except ValueError as e:
            raise DecodeError(f"Malformed stream line {line[:80]!r}: {e}") from e

        if not isinstance(data, dict):
            raise DecodeError(f"Stream line is not a JSON object: {line[:80]!r}")
        if "error" in data and "response" not in data:
            raise DecodeError(f"Server error: {data['error']}")
        if not isinstance(data.get("response"), str) or not isinstance(data.get("done"), bool):
            raise DecodeError(f"Stream line lacks response/done: {line[:80]!r}")

        stats = None
        if any(data.get(field) is not None for field in _STAT_FIELDS):
            stats = GenerationStats(**{field: data.get(field) for field in _STAT_FIELDS})

        return cls(
            response=data["response"],
            done=data["done"],
            model=data.get("model"),
            created_at=data.get("created_at"),
            done_reason=data.get("done_reason"),
            stats=stats,
        )


class NDJSONDecoder:
    """
    Incremental line reassembly over a byte stream.

    feed() yields each record completed by the new bytes as soon as it is
    decoded; a malformed line raises only after the records before it were
    yielded. Consume the generator fully. A trailing line without its newline is never decoded: when the stream ends it stays in
    `pending` and is dropped by the caller.
    """

    def __init__(self):
        self._buffer = bytearray()

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)

    def feed(self, data: bytes) -> Iterator[StreamChunk]:
        self._buffer.extend(data)
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                return
            line = bytes(self._buffer[:newline])
            del self._buffer[:newline + 1]
            yield StreamChunk.from_json(line)


# ── Sinks ──────────────────────────────────────────────────────────────────────

class TextSink:
    """
    Receives text deltas of one response.

    The first delta is preceded by RESPONSE_MARKER; later deltas are written
    raw. Use a fresh sink per response.
    """

    marker = RESPONSE_MARKER

    def __init__(self, write: Callable[[str], None]):
        self._write = write
        self.started = False

    def write_marker(self) -> None:
        self._write(self.marker)

    def emit(self, delta: str) -> None:
        if not self.started:
            self.started = True
            self.write_marker()
        self._write(delta)


class NullSink(TextSink):
    """Discards everything (model preload)."""

    def __init__(self):
        super().__init__(lambda _text: None)


# ── Engine ─────────────────────────────────────────────────────────────────────

class ChatEngine:
    """
    Streaming client for Ollama's /api/generate.

    One request at a time, no timeout: a generation blocks until the server
    closes the stream or the caller interrupts it.
    """

    def __init__(
        self,
        facts: SystemFacts,
        session: SessionState,
        model_name: str = DEFAULT_MODEL_NAME,
        base_url: str = OLLAMA_BASE_URL,
        http: Optional[requests.Session] = None,
    ):
        self.facts = facts
        self.session = session
        self.model_name = model_name
        self.base_url = base_url.rstrip("/")
        self.http = http or requests.Session()

    def build_prompt(self, query: str) -> str:
        return build_prompt(self.facts, self.session, query)

    def stream_generate(self, model_name: str, prompt: str, sink: TextSink) -> Optional[GenerationStats]:
        """
        POST {model, prompt} and push every non-empty response delta to `sink`.

        Returns the counters of the last record that carried any. Raises
        NetworkError on transport failure and DecodeError on the first
        malformed line.
        """
        decoder = NDJSONDecoder()
        stats = None
        logger.debug("generate model=%s prompt=%d chars", model_name, len(prompt))
        try:
            with self.http.post(
                f"{self.base_url}/api/generate",
                json={"model": model_name, "prompt": prompt},
                headers={"Content-Type": "application/json"},
                stream=True,
            ) as response:
                response.raise_for_status()
                for data in response.iter_content(chunk_size=READ_CHUNK_SIZE):
                    if not data:
                        break
                    for chunk in decoder.feed(data):
                        if chunk.response:
                            sink.emit(chunk.response)
                        if chunk.stats is not None:
                            stats = chunk.stats
        except requests.RequestException as e:
            raise NetworkError(f"Request to {self.base_url}/api/generate failed: {e}") from e

        if decoder.pending:
            logger.debug("dropped %d bytes of unterminated trailing line", len(decoder.pending))
        if stats is not None and stats.tokens_per_second:
            logger.debug(
                "generated %s tokens at %.1f tok/s", stats.eval_count, stats.tokens_per_second
            )
        return stats

    def ask(self, query: str, sink: TextSink) -> Optional[GenerationStats]:
        """Answer a user question in the context of the current session."""
        return self.stream_generate(self.model_name, self.build_prompt(query), sink)

    def preload(self) -> None:
        """Warm the model up with a throwaway generation."""
        logger.debug("preloading %s", self.model_name)
        self.stream_generate(self.model_name, PRELOAD_PROMPT, NullSink())
