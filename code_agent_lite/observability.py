"""Logging setup and execution event tracking for the agent engine."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

LOGGER_NAME = "code_agent_lite"
LOG_LEVEL_ENV = "CODE_AGENT_LITE_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(verbose: bool = False) -> logging.Logger:
    """Attach a single stream handler to the package logger.

    The level comes from ``CODE_AGENT_LITE_LOG_LEVEL`` when it is set,
    otherwise INFO for verbose runs and WARNING for quiet ones.
    """
    package_logger = logging.getLogger(LOGGER_NAME)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        package_logger.addHandler(handler)

    level_name = os.environ.get(LOG_LEVEL_ENV, "").strip().upper()
    level = logging.getLevelName(level_name) if level_name else None
    if not isinstance(level, int):
        level = logging.INFO if verbose else logging.WARNING
    package_logger.setLevel(level)
    return package_logger


@dataclass
class AgentEvent:
    """A single event in the agent's execution."""

    timestamp: datetime
    event_type: str  # "tool_call", "llm_request", "llm_response", "error", "step_start", "step_end"
    data: Dict[str, Any]
    duration_ms: Optional[float] = None
    tokens_used: Optional[int] = None


class AgentObserver:
    """
    Observability layer for tracking engine execution.

    Collects events and mirrors them to the package logger.
    """

    def __init__(self, session_id: Optional[str] = None):
        self.events: List[AgentEvent] = []
        self.logger = logging.getLogger(f"{LOGGER_NAME}.engine")
        self.session_id = session_id

    def _prefix(self) -> str:
        return f"[{self.session_id}] " if self.session_id else ""

    def log_step_start(self, step: int):
        self.events.append(AgentEvent(timestamp=datetime.now(), event_type="step_start", data={"step": step}))
        self.logger.info(f"{self._prefix()}Step {step} started")

    def log_step_end(self, step: int, duration_ms: float):
        self.events.append(
            AgentEvent(timestamp=datetime.now(), event_type="step_end", data={"step": step}, duration_ms=duration_ms)
        )
        self.logger.info(f"{self._prefix()}Step {step} completed ({duration_ms:.2f}ms)")

    def log_llm_request(self, model: str, step: int, duration_ms: float, tokens: Optional[int] = None):
        """
        Log a model API request.

        Args:
            model: Model name (e.g., "gpt-4o")
            step: Current step number in the engine loop
            duration_ms: Request duration in milliseconds
            tokens: Total tokens reported by the provider, if any
        """
        self.events.append(
            AgentEvent(
                timestamp=datetime.now(),
                event_type="llm_request",
                data={"model": model, "step": step},
                duration_ms=duration_ms,
                tokens_used=tokens,
            )
        )
        token_info = f" | {tokens} tokens" if tokens is not None else ""
        self.logger.info(f"{self._prefix()}LLM: {model} | Step {step}{token_info} | {duration_ms:.2f}ms")

    def log_llm_response(self, step: int, text: str, tool_calls: Optional[List[Dict[str, Any]]] = None):
        tools = tool_calls or []
        self.events.append(
            AgentEvent(
                timestamp=datetime.now(),
                event_type="llm_response",
                data={"step": step, "text": text, "tool_calls": tools},
            )
        )
        try:
            tools_dump = json.dumps(tools, ensure_ascii=True)
        except (TypeError, ValueError):
            tools_dump = str(tools)
        self.logger.debug(f"{self._prefix()}LLM response | Step {step} | tools={tools_dump}")

    def log_tool_call(self, tool_name: str, args: Dict[str, Any], result: str, duration_ms: float, success: bool = True):
        """
        Log a tool execution.

        Args:
            tool_name: Name of the tool executed
            args: Arguments passed to the tool
            result: Result text (truncated in the stored event)
            duration_ms: Execution time in milliseconds
            success: Whether execution succeeded
        """
        self.events.append(
            AgentEvent(
                timestamp=datetime.now(),
                event_type="tool_call",
                data={"tool": tool_name, "args": args, "result": result[:200], "success": success},
                duration_ms=duration_ms,
            )
        )
        status = "ok" if success else "failed"
        self.logger.info(f"{self._prefix()}Tool {tool_name} {status} ({duration_ms:.2f}ms)")

    def log_error(self, error_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self.events.append(
            AgentEvent(
                timestamp=datetime.now(),
                event_type="error",
                data={"error_type": error_type, "message": message, "context": context or {}},
            )
        )
        self.logger.error(f"{self._prefix()}Error ({error_type}): {message}")

    def get_session_stats(self) -> Dict[str, Any]:
        """
        Get aggregated statistics for the observed run(s).

        Returns:
            Dictionary with event counts, token totals and durations
        """
        tool_calls = [e for e in self.events if e.event_type == "tool_call"]
        return {
            "total_tokens": sum(e.tokens_used or 0 for e in self.events),
            "total_duration_ms": sum(e.duration_ms or 0 for e in self.events if e.event_type == "step_end"),
            "event_count": len(self.events),
            "steps": sum(1 for e in self.events if e.event_type == "step_start"),
            "tool_calls": len(tool_calls),
            "failed_tool_calls": sum(1 for e in tool_calls if not e.data.get("success", True)),
            "llm_requests": sum(1 for e in self.events if e.event_type == "llm_request"),
            "errors": sum(1 for e in self.events if e.event_type == "error"),
        }

    def clear(self):
        self.events.clear()
