"""Streaming orchestration of one assistant turn.

``prepare_turn`` does everything that can fail with a clean HTTP status
(validation, credentials, context assembly) before a byte is streamed.
``stream_turn`` then yields server-sent events while it drives the model,
the tool pipeline, the optional summary pass and the planner fallback.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generator, Iterator, List, Optional, Sequence

from ..config import CONFIG, AgentConfig
from ..errors import PenguinError, ProviderError, ToolValidationError, ValidationError
from ..llm.messages import (
    AssistantMessage,
    SystemMessage,
    ToolCall,
    ToolResultMessage,
    Transcript,
    UserMessage,
)
from ..llm.providers import LLMConnection, build_provider_request
from ..llm_client import LLMClient
from ..logging_utils import LogTag, format_decision, format_state_transition, format_tool_event
from ..memory.action_ledger import ActionLedger
from ..memory.manager import AssembledContext, MemoryManager
from ..memory.prompts import PromptSettings, planner_prompt
from ..security.injection import validate_message
from ..store.conversations import ConversationStore
from ..store.settings import Profile, SettingsStore
from ..tools.base import TALENT_INDUSTRY, SUPER_ADMIN_ROLE, ToolRegistry, ToolRequest, ToolResult, ToolSpec
from ..tools.executor import ToolExecutor
from ..utils.json_helpers import extract_json_object
from ..utils.prompt_sanitizer import compute_prompt_stats
from .grounding import GroundingGuard
from .intent import IntentClassifier, IntentDecision, KeywordIntentClassifier
from .memory_tag import extract_memory_tag
from .narration import ACTION_NOT_VERIFIED, DONE, SEARCH_FALLBACK, Narrator, content_chunk, error_chunk
from .tool_policy import ToolPolicy


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_FIRST_TOKEN = "awaiting_first_token"
    STREAMING_CONTENT = "streaming_content"
    TOOL_CALLS_ACCUMULATING = "tool_calls_accumulating"
    TOOLS_EXECUTING = "tools_executing"
    SUMMARY_PASS = "summary_pass"
    PLANNER_FALLBACK = "planner_fallback"
    DONE = "done"
    ERROR = "error"


@dataclass
class ChatRequest:
    """Inbound chat request after JSON decoding."""

    message: Any
    user_id: str
    company_id: str
    conversation_id: Optional[str] = None
    language: str = "en"
    timezone: Optional[str] = None
    currency: Optional[str] = None
    industry: Optional[str] = None


@dataclass
class PreparedTurn:
    """A validated turn, ready to stream."""

    message: str
    conversation: Dict[str, Any]
    connection: LLMConnection
    profile: Profile
    tool_request: ToolRequest
    tools: List[ToolSpec]
    intent: IntentDecision
    context: AssembledContext

    @property
    def conversation_id(self) -> str:
        return self.conversation["id"]

    @property
    def language(self) -> str:
        return self.tool_request.language


class ToolCallAccumulator:
    """Joins streamed tool-call fragments by their ``index``."""

    def __init__(self) -> None:
        self._calls: Dict[int, Dict[str, str]] = {}

    def __bool__(self) -> bool:
        return bool(self._calls)

    def add(self, fragments: Sequence[Dict[str, Any]]) -> None:
        for position, fragment in enumerate(fragments):
            index = fragment.get("index")
            if not isinstance(index, int):
                index = position
            entry = self._calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
            if fragment.get("id"):
                entry["id"] = fragment["id"]
            function = fragment.get("function") or {}
            if function.get("name"):
                entry["name"] += function["name"]
            if function.get("arguments"):
                entry["arguments"] += function["arguments"]

    def calls(self) -> List[ToolCall]:
        calls: List[ToolCall] = []
        seen = set()
        for index, entry in sorted(self._calls.items()):
            call_id = entry["id"] if entry["id"] and entry["id"] not in seen else f"call_{index}"
            seen.add(call_id)
            calls.append(ToolCall(id=call_id, name=entry["name"], arguments=entry["arguments"]))
        return calls


@dataclass
class PassResult:
    text: str = ""
    calls: List[ToolCall] = field(default_factory=list)
    buffered: List[str] = field(default_factory=list)


@dataclass
class TurnRun:
    """Mutable bookkeeping for one streamed turn."""

    prepared: PreparedTurn
    transcript: Transcript
    narrator: Narrator
    state: TurnState = TurnState.IDLE
    content_parts: List[str] = field(default_factory=list)
    tool_texts: List[str] = field(default_factory=list)
    calls_received: int = 0
    executed: int = 0
    executed_search: bool = False
    input_chars: int = 0

    @property
    def content(self) -> str:
        return "".join(self.content_parts)


class PenguinAssistant:
    """Runs chat turns for any tenant against that user's own model connection."""

    def __init__(
        self,
        *,
        llm_client: LLMClient,
        conversations: ConversationStore,
        settings: SettingsStore,
        memory_manager: MemoryManager,
        registry: ToolRegistry,
        ledger: ActionLedger,
        executor: Optional[ToolExecutor] = None,
        tool_policy: Optional[ToolPolicy] = None,
        grounding: Optional[GroundingGuard] = None,
        intent_classifier: Optional[IntentClassifier] = None,
        config: Optional[AgentConfig] = None,
    ) -> None:
        self.llm_client = llm_client
        self.conversations = conversations
        self.settings = settings
        self.memory_manager = memory_manager
        self.registry = registry
        self.ledger = ledger
        self.executor = executor or ToolExecutor(registry)
        self.tool_policy = tool_policy or ToolPolicy(registry)
        self.grounding = grounding or GroundingGuard()
        self.intent_classifier = intent_classifier or KeywordIntentClassifier()
        self.config = config or CONFIG.agent
        self.logger = logging.getLogger("penguin_brain.assistant")

    # ------------------------------------------------------------------ #
    # Turn preparation
    # ------------------------------------------------------------------ #

    def prepare_turn(self, request: ChatRequest) -> PreparedTurn:
        """Validate and assemble a turn; raises before anything is streamed."""

        guarded = validate_message(request.message, self.config.max_message_chars)
        if not request.user_id or not request.company_id:
            raise ValidationError("userId and companyId are required")
        connection = self.settings.resolve_llm_connection(request.user_id)
        conversation = self.conversations.ensure_conversation(
            request.conversation_id, request.user_id, request.company_id
        )
        profile = self.settings.profile(request.user_id)
        roles = self.settings.roles(request.user_id)
        tools = self.registry.filter_for_tenant(request.industry, roles)
        intent = self.intent_classifier.classify(guarded.text)
        language = "zh" if request.language == "zh" else "en"
        tool_request = ToolRequest(
            company_id=request.company_id,
            user_id=request.user_id,
            language=language,
            conversation_id=conversation["id"],
        )
        prompt_settings = PromptSettings(
            assistant_name=profile.assistant_name,
            language=language,
            timezone=request.timezone or self.config.default_timezone,
            currency=request.currency or self.config.default_currency,
            industry=request.industry,
            talent_enabled=request.industry == TALENT_INDUSTRY or SUPER_ADMIN_ROLE in roles,
            learning_enabled=profile.learning_enabled,
        )
        context = self.memory_manager.assemble(tool_request, guarded.text, prompt_settings)
        self.logger.info(
            format_decision("intent", intent.action_intent, why=intent.reason, verb=intent.verb),
            extra={
                "conversation_id": conversation["id"],
                "company_id": request.company_id,
                "action_intent": intent.action_intent,
                "tool_count": len(tools),
                "provider": connection.provider,
                "model": connection.model,
            },
        )
        return PreparedTurn(
            message=guarded.text,
            conversation=conversation,
            connection=connection,
            profile=profile,
            tool_request=tool_request,
            tools=tools,
            intent=intent,
            context=context,
        )

    # ------------------------------------------------------------------ #
    # Streaming
    # ------------------------------------------------------------------ #

    def stream_turn(self, prepared: PreparedTurn) -> Iterator[str]:
        """Yield SSE events for the turn, always ending with ``[DONE]``."""

        transcript = Transcript([SystemMessage(prepared.context.system_prompt), *prepared.context.history])
        transcript.append(UserMessage(prepared.message))
        run = TurnRun(prepared=prepared, transcript=transcript, narrator=Narrator(prepared.language))

        self.conversations.record_user_message(prepared.conversation, prepared.message)
        yield run.narrator.thinking()
        try:
            yield from self._run(run)
        except ProviderError as exc:
            self._transition(run, TurnState.ERROR, exc.category)
            self.logger.error(
                "Turn ended by provider error",
                extra={"conversation_id": prepared.conversation_id, "status_code": exc.status_code},
            )
            yield error_chunk(exc.user_message(prepared.language), exc.status_code)
        except PenguinError as exc:
            self._transition(run, TurnState.ERROR, type(exc).__name__)
            self.logger.error(
                "Turn failed: %s", exc, extra={"conversation_id": prepared.conversation_id}
            )
            yield error_chunk(
                prepared.tool_request.msg("Something went wrong. Please try again.", "發生錯誤，請重試。"),
                500,
            )
        except Exception:  # noqa: BLE001 - surfaced to client
            self._transition(run, TurnState.ERROR, "unexpected")
            self.logger.exception("Turn crashed", extra={"conversation_id": prepared.conversation_id})
            yield error_chunk(
                prepared.tool_request.msg("Something went wrong. Please try again.", "發生錯誤，請重試。"),
                500,
            )
        yield DONE

    def _run(self, run: TurnRun) -> Generator[str, None, None]:
        prepared = run.prepared
        tool_choice = "required" if prepared.intent.action_intent else "auto"
        result = yield from self._stream_pass(run, tool_choice, buffer=prepared.intent.action_intent)
        if result.calls:
            yield from self._execute_calls(run, result.calls)
        if result.buffered:
            text = "".join(result.buffered)
            yield content_chunk(text)

        if run.executed_search:
            yield from self._summary_pass(run)

        if prepared.intent.action_intent and run.calls_received == 0:
            yield from self._planner_fallback(run)

        self._finish(run)

    def _transition(self, run: TurnRun, state: TurnState, reason: str) -> None:
        if run.state is state:
            return
        self.logger.info(
            format_state_transition(run.state.value, state.value, reason),
            extra={"conversation_id": run.prepared.conversation_id, "state": state.value},
        )
        run.state = state

    def _stream_pass(
        self,
        run: TurnRun,
        tool_choice: str,
        *,
        buffer: bool,
    ) -> Generator[str, None, PassResult]:
        """One streamed model call; content goes live unless buffered for an action turn."""

        prepared = run.prepared
        messages = run.transcript.messages
        stats = compute_prompt_stats(messages)
        run.input_chars += stats["total_chars"]
        request = build_provider_request(
            prepared.connection,
            messages,
            tools=[tool.to_openai() for tool in prepared.tools],
            tool_choice=tool_choice,
            stream=True,
        )
        self._transition(run, TurnState.AWAITING_FIRST_TOKEN, "request_sent")
        accumulator = ToolCallAccumulator()
        result = PassResult()
        text_parts: List[str] = []
        deltas = self.llm_client.stream(request)
        try:
            for delta in deltas:
                text = delta.get("content")
                if text:
                    if run.state is TurnState.AWAITING_FIRST_TOKEN:
                        self._transition(run, TurnState.STREAMING_CONTENT, "content")
                    text_parts.append(text)
                    run.content_parts.append(text)
                    if buffer and not accumulator:
                        result.buffered.append(text)
                    else:
                        yield content_chunk(text)
                fragments = delta.get("tool_calls")
                if fragments:
                    if not accumulator:
                        self._transition(run, TurnState.TOOL_CALLS_ACCUMULATING, "tool_delta")
                        yield run.narrator.preparing_tool()
                    accumulator.add(fragments)
        finally:
            close = getattr(deltas, "close", None)
            if close is not None:
                close()
        result.text = "".join(text_parts)
        result.calls = [call for call in accumulator.calls() if call.name]
        run.calls_received += len(result.calls)
        run.transcript.append(AssistantMessage(content=result.text, tool_calls=tuple(result.calls)))
        return result

    # ------------------------------------------------------------------ #
    # Tool pipeline
    # ------------------------------------------------------------------ #

    def _execute_calls(self, run: TurnRun, calls: Sequence[ToolCall]) -> Generator[str, None, None]:
        self._transition(run, TurnState.TOOLS_EXECUTING, f"{len(calls)}_calls")
        corrections: List[str] = []
        for call in calls:
            correction = yield from self._execute_call(run, call)
            if correction:
                corrections.append(correction)
        # Every call of the batch is answered before any system message.
        for correction in corrections:
            run.transcript.append(SystemMessage(correction))

    def _answer(self, run: TurnRun, call: ToolCall, payload: Dict[str, Any]) -> None:
        message = ToolResultMessage(call_id=call.id, name=call.name, payload=payload)
        run.transcript.append(message)
        run.tool_texts.append(message.content)

    def _execute_call(self, run: TurnRun, call: ToolCall) -> Generator[str, None, Optional[str]]:
        """Run one call through validation, grounding, dedup, execution and the ledger.

        Returns a corrective system instruction when the call was refused for
        an ungrounded name.
        """

        prepared = run.prepared
        request = prepared.tool_request
        narrator = run.narrator
        yield narrator.tool_started(call.name)

        allowed = {tool.name for tool in prepared.tools}
        if call.name not in allowed:
            result = ToolResult(success=False, message=request.msg(f"Unknown tool: {call.name}", f"未知的工具：{call.name}"))
            self.logger.warning(format_tool_event(LogTag.TOOL_REJECT, call.name, why="unknown"))
            yield narrator.tool_finished(call.name, result)
            self._answer(run, call, result.to_payload())
            return None

        try:
            raw_args = call.parse_arguments()
        except json.JSONDecodeError as exc:
            self.logger.warning(format_tool_event(LogTag.TOOL_REJECT, call.name, why="bad_json"))
            yield narrator.status("⚠️", "Error occurred", "發生錯誤")
            self._answer(run, call, {"success": False, "error": f"Invalid JSON arguments: {exc.msg}"})
            return None

        try:
            args = self.tool_policy.check(call.name, raw_args)
        except ToolValidationError as exc:
            self.logger.warning(format_tool_event(LogTag.TOOL_REJECT, call.name, why=exc.reason[:60]))
            yield narrator.status("⚠️", "Error occurred", "發生錯誤")
            self._answer(run, call, {"success": False, "error": f"Invalid arguments: {exc.reason}"})
            return None

        recent = prepared.context.history_texts[-self.config.grounding_window:] + run.tool_texts
        verdict = self.grounding.check(call.name, args, prepared.message, recent)
        if not verdict.grounded:
            self.logger.warning(format_tool_event(LogTag.TOOL_UNGROUNDED, call.name, names=len(verdict.ungrounded)))
            yield narrator.skipped_ungrounded()
            self._answer(
                run,
                call,
                {
                    "success": False,
                    "error": "Not executed: name not found in the conversation",
                    "ungrounded": verdict.ungrounded,
                },
            )
            return verdict.corrective_message(call.name)

        spec = self.registry.get(call.name)
        if not spec.is_search:
            duplicate = self.ledger.find_duplicate(request, call.name, args)
            if duplicate is not None:
                self.logger.info(
                    format_tool_event(LogTag.TOOL_DUPLICATE, call.name, window=f"{self.ledger.config.duplicate_window_minutes}m")
                )
                notice = narrator.duplicate_notice(duplicate.get("summary"))
                run.content_parts.append(notice)
                yield content_chunk(notice)
                self._answer(
                    run,
                    call,
                    {
                        "success": True,
                        "duplicate": True,
                        "message": "This action was already completed recently and was not repeated.",
                        "summary": duplicate.get("summary"),
                    },
                )
                return None

        result = self.executor.execute(call.name, args, request)
        run.executed += 1
        if spec.is_search:
            run.executed_search = True
        else:
            self._record(request, call.name, args, result)
        self.logger.info(format_tool_event(LogTag.TOOL_EXEC, call.name, ok="Y" if result.success else "N"))
        yield narrator.tool_finished(call.name, result)
        if not spec.is_search:
            verified = narrator.verified_message(result)
            run.content_parts.append(verified)
            yield content_chunk(verified)
        self._answer(run, call, result.to_payload())
        return None

    def _record(self, request: ToolRequest, tool_name: str, args: Dict[str, Any], result: ToolResult) -> None:
        try:
            self.ledger.record(request, tool_name, args, result)
        except PenguinError as exc:
            self.logger.error(
                "Failed to record action: %s",
                exc,
                extra={"tool": tool_name, "conversation_id": request.conversation_id},
            )

    # ------------------------------------------------------------------ #
    # Follow-up passes
    # ------------------------------------------------------------------ #

    def _summary_pass(self, run: TurnRun) -> Generator[str, None, None]:
        yield run.narrator.summarizing()
        self._transition(run, TurnState.SUMMARY_PASS, "search_results")
        try:
            result = yield from self._stream_pass(run, "auto", buffer=False)
        except ProviderError as exc:
            self.logger.warning(
                "Summary pass failed",
                extra={"conversation_id": run.prepared.conversation_id, "status_code": exc.status_code},
            )
            fallback = f"\n\n{SEARCH_FALLBACK}"
            run.content_parts.append(fallback)
            yield content_chunk(fallback)
            return
        if result.calls:
            yield from self._execute_calls(run, result.calls)

    def _planner_fallback(self, run: TurnRun) -> Generator[str, None, None]:
        prepared = run.prepared
        yield run.narrator.analyzing()
        self._transition(run, TurnState.PLANNER_FALLBACK, "no_tool_calls")
        run.transcript.append(SystemMessage(planner_prompt([tool.name for tool in prepared.tools])))
        request = build_provider_request(prepared.connection, run.transcript.messages, stream=False)
        executed_before = run.executed
        try:
            reply = self.llm_client.complete(request)
        except ProviderError as exc:
            self.logger.warning(
                "Planner call failed",
                extra={"conversation_id": prepared.conversation_id, "status_code": exc.status_code},
            )
            reply = ""
        plan = extract_json_object(reply)
        tool_name = plan.get("tool") if plan else None
        args = plan.get("args", {}) if plan else None
        if isinstance(tool_name, str) and tool_name and isinstance(args, dict):
            call = ToolCall(id="planner_call", name=tool_name, arguments=json.dumps(args, ensure_ascii=False))
            run.calls_received += 1
            run.transcript.append(AssistantMessage(tool_calls=(call,)))
            yield from self._execute_calls(run, [call])
            if run.executed_search:
                yield from self._summary_pass(run)
        if run.executed == executed_before:
            self.logger.warning("Planner produced no executable call", extra={"conversation_id": prepared.conversation_id})
            notice = f"\n\n{ACTION_NOT_VERIFIED}"
            run.content_parts.append(notice)
            yield content_chunk(notice)

    # ------------------------------------------------------------------ #
    # Completion
    # ------------------------------------------------------------------ #

    def _finish(self, run: TurnRun) -> None:
        prepared = run.prepared
        content = run.content
        metadata: Optional[Dict[str, Any]] = None
        tag = extract_memory_tag(content)
        content = tag.content
        if prepared.profile.learning_enabled:
            metadata = tag.metadata
        if content.strip():
            self.conversations.add_message(
                prepared.conversation_id,
                "assistant",
                content,
                metadata=metadata,
                model_used=prepared.connection.model,
            )
            self.conversations.log_usage(
                user_id=prepared.tool_request.user_id,
                company_id=prepared.tool_request.company_id,
                conversation_id=prepared.conversation_id,
                provider=prepared.connection.provider,
                model=prepared.connection.model,
                input_chars=run.input_chars,
                output_chars=len(content),
            )
        else:
            self.logger.info("Empty assistant reply not persisted", extra={"conversation_id": prepared.conversation_id})
        self._transition(run, TurnState.DONE, "complete")
        self.logger.info(
            "Turn complete",
            extra={
                "conversation_id": prepared.conversation_id,
                "tool_count": run.executed,
                "output_length": len(content),
            },
        )


__all__ = [
    "ChatRequest",
    "PassResult",
    "PenguinAssistant",
    "PreparedTurn",
    "ToolCallAccumulator",
    "TurnState",
]
