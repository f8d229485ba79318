"""Tests for the streaming dispatcher and its tool-round loop."""

from __future__ import annotations

import logging

import pytest

from tests.mock_models import (
    ScriptedChatModel,
    ScriptedTurn,
    error_turn,
    make_response,
    reasoning_turn,
    text_turn,
    tool_turn,
)
from tests.mock_tools import SUM_SPEC, sum_request
from tokenstream.errors import (
    ModelStreamError,
    RecursionLimitError,
    ToolExecutionError,
    ToolNotFoundError,
)
from tokenstream.llm.delta import Delta
from tokenstream.llm.types import (
    AiMessage,
    ChatRequest,
    TokenUsage,
    ToolExecutionRequest,
    ToolExecutionResultMessage,
    UserMessage,
)
from tokenstream.memory.store import ChatMemoryService
from tokenstream.streaming.classifier import (
    ExtractionStrategy,
    ReasoningClassifier,
    has_reasoning_content,
)
from tokenstream.streaming.context import ServiceContext
from tokenstream.streaming.dispatcher import DispatchState, StreamingResponseDispatcher


class Recorder:
    """Collects every user-facing callback as ``(kind, value)``."""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []
        self.responses = []
        self.errors: list[BaseException] = []
        self.executions = []

    def partial(self, text):
        self.events.append(("partial", text))

    def reasoning(self, text):
        self.events.append(("reasoning", text))

    def complete_reasoning(self, text):
        self.events.append(("complete_reasoning", text))

    def complete(self, response):
        self.events.append(("complete", response.ai_message.text))
        self.responses.append(response)

    def tool(self, execution):
        self.events.append(("tool", execution.result))
        self.executions.append(execution)

    def error(self, error):
        self.events.append(("error", type(error).__name__))
        self.errors.append(error)


def sum_executor(request, memory_id):
    args = request.arguments_dict()
    return str(args["a"] + args["b"])


def make_dispatcher(
    model,
    recorder,
    *,
    messages=None,
    memory_service=None,
    max_tool_rounds=None,
    executors=None,
    specs=(SUM_SPEC,),
    classifier=None,
    memory_id="conv-1",
    with_error_handler=True,
):
    messages = messages or [UserMessage("hi")]
    context = ServiceContext(model, memory_service, max_tool_rounds)
    return StreamingResponseDispatcher(
        context,
        memory_id,
        recorder.partial,
        tool_execution_handler=recorder.tool,
        complete_response_handler=recorder.complete,
        error_handler=recorder.error if with_error_handler else None,
        temporary_memory=[] if memory_service else list(messages),
        token_usage=TokenUsage(),
        tool_specifications=list(specs),
        tool_executors=executors if executors is not None else {"sum": sum_executor},
        partial_reasoning_handler=recorder.reasoning,
        complete_reasoning_handler=recorder.complete_reasoning,
        classifier=classifier,
    )


async def run(dispatcher, messages=None):
    return await dispatcher.run(ChatRequest.of(messages or [UserMessage("hi")]))


class TestConstruction:
    @pytest.mark.parametrize("missing", ["context", "memory_id", "partial"])
    def test_required_arguments(self, missing):
        model = ScriptedChatModel([])
        args = {
            "context": ServiceContext(model),
            "memory_id": "m",
            "partial": lambda text: None,
        }
        args[missing] = None
        with pytest.raises(ValueError):
            StreamingResponseDispatcher(args["context"], args["memory_id"], args["partial"])


class TestPlainAnswer:
    async def test_partial_then_complete(self):
        rec = Recorder()
        model = ScriptedChatModel([text_turn("he", "llo", usage=TokenUsage(5, 2, 7))])
        dispatcher = make_dispatcher(model, rec)

        last = await run(dispatcher)

        assert rec.events == [("partial", "he"), ("partial", "llo"), ("complete", "hello")]
        assert rec.responses[0].token_usage == TokenUsage(5, 2, 7)
        assert last is dispatcher
        assert last.state is DispatchState.DONE_TERMINAL

    async def test_direct_partial_entry_point(self):
        rec = Recorder()
        model = ScriptedChatModel([text_turn("a", "b")], raw_chunks=False)
        await run(make_dispatcher(model, rec))
        assert rec.events == [("partial", "a"), ("partial", "b"), ("complete", "ab")]

    async def test_async_callbacks_are_awaited(self):
        seen = []

        async def on_partial(text):
            seen.append(text)

        async def on_complete(response):
            seen.append(("done", response.ai_message.text))

        model = ScriptedChatModel([text_turn("x", "y")])
        dispatcher = StreamingResponseDispatcher(
            ServiceContext(model),
            "m",
            on_partial,
            complete_response_handler=on_complete,
            temporary_memory=[UserMessage("hi")],
        )
        await run(dispatcher)
        assert seen == ["x", "y", ("done", "xy")]

    async def test_terminal_answer_is_added_to_temporary_memory(self):
        rec = Recorder()
        memory = [UserMessage("hi")]
        model = ScriptedChatModel([text_turn("ok")])
        context = ServiceContext(model)
        dispatcher = StreamingResponseDispatcher(
            context, "m", rec.partial, temporary_memory=memory
        )
        await run(dispatcher)
        assert memory == [UserMessage("hi"), AiMessage(text="ok")]


class TestReasoningRouting:
    async def test_reasoning_and_answer_mixed(self):
        rec = Recorder()
        model = ScriptedChatModel([reasoning_turn(["think1", "think2"], ["A"])])
        classifier = ReasoningClassifier(has_reasoning_content, "$.reasoning_content")

        await run(make_dispatcher(model, rec, classifier=classifier))

        assert rec.events == [
            ("reasoning", "think1"),
            ("reasoning", "think2"),
            ("partial", "A"),
            ("complete", "A"),
        ]

    async def test_disabled_classifier_emits_no_reasoning(self):
        rec = Recorder()
        model = ScriptedChatModel([reasoning_turn(["hidden"], ["A"])])
        await run(make_dispatcher(model, rec))
        assert ("reasoning", "hidden") not in rec.events
        assert rec.events == [("partial", "A"), ("complete", "A")]

    async def test_predicate_failure_for_one_chunk_only(self, caplog):
        rec = Recorder()
        calls = {"n": 0}

        def flaky(path, raw):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("boom")
            return has_reasoning_content(path, raw)

        model = ScriptedChatModel(
            [
                ScriptedTurn(
                    deltas=[
                        Delta(reasoning_content="r1"),
                        Delta(reasoning_content="r2", content="fallback"),
                        Delta(reasoning_content="r3"),
                    ],
                    response=make_response("fallback"),
                )
            ]
        )
        classifier = ReasoningClassifier(flaky, "$.reasoning_content")

        with caplog.at_level(logging.WARNING):
            await run(make_dispatcher(model, rec, classifier=classifier))

        assert rec.events == [
            ("reasoning", "r1"),
            ("partial", "fallback"),
            ("reasoning", "r3"),
            ("complete", "fallback"),
        ]
        assert rec.errors == []
        assert "Error in reasoning detection" in caplog.text

    async def test_extractor_failure_reaches_error_handler(self):
        rec = Recorder()

        def broken(raw):
            raise KeyError("text")

        classifier = ReasoningClassifier(extraction=ExtractionStrategy(answer=broken))
        model = ScriptedChatModel([text_turn("a")])
        await run(make_dispatcher(model, rec, classifier=classifier))
        assert isinstance(rec.errors[0], KeyError)

    async def test_reasoning_handlers_follow_tool_rounds(self):
        rec = Recorder()
        model = ScriptedChatModel(
            [
                ScriptedTurn(
                    deltas=[Delta(reasoning_content="plan")],
                    response=make_response(None, [sum_request()]),
                ),
                reasoning_turn(["check"], ["5"]),
            ]
        )
        classifier = ReasoningClassifier(has_reasoning_content, "$.reasoning_content")
        await run(make_dispatcher(model, rec, classifier=classifier))
        assert [e for e in rec.events if e[0] == "reasoning"] == [
            ("reasoning", "plan"),
            ("reasoning", "check"),
        ]


class TestToolRounds:
    async def test_single_round_trip(self):
        rec = Recorder()
        service = ChatMemoryService()
        memory = service.get_or_create_chat_memory("conv-1")
        await memory.add(UserMessage("what is 2+3?"))

        model = ScriptedChatModel(
            [
                tool_turn(sum_request(2, 3), usage=TokenUsage(10, 5, 15)),
                text_turn("The answer is 5", usage=TokenUsage(20, 4, 24)),
            ]
        )
        dispatcher = make_dispatcher(model, rec, memory_service=service)

        last = await run(dispatcher, await memory.messages())

        assert await memory.messages() == [
            UserMessage("what is 2+3?"),
            AiMessage(tool_execution_requests=[sum_request(2, 3)]),
            ToolExecutionResultMessage(id="call_1", tool_name="sum", text="5"),
            AiMessage(text="The answer is 5"),
        ]
        assert [e for e in rec.events if e[0] == "complete"] == [("complete", "The answer is 5")]
        assert rec.responses[0].token_usage == TokenUsage(30, 9, 39)
        assert rec.executions[0].request.name == "sum"
        assert rec.executions[0].result == "5"
        assert dispatcher.state is DispatchState.RECURSE
        assert last is not dispatcher
        assert last.round_index == 1
        assert last.state is DispatchState.DONE_TERMINAL

    async def test_follow_up_request_carries_history_and_tools(self):
        rec = Recorder()
        model = ScriptedChatModel([tool_turn(sum_request()), text_turn("5")])
        await run(make_dispatcher(model, rec))

        follow_up = model.requests[1]
        assert follow_up.tool_specifications == (SUM_SPEC,)
        assert [type(m).__name__ for m in follow_up.messages] == [
            "UserMessage",
            "AiMessage",
            "ToolExecutionResultMessage",
        ]

    async def test_memory_grows_by_k_plus_one(self):
        rec = Recorder()
        memory = [UserMessage("two sums")]
        requests = [sum_request(1, 1, "c1"), sum_request(2, 2, "c2")]
        model = ScriptedChatModel([tool_turn(*requests), text_turn("2 and 4")])
        dispatcher = make_dispatcher(model, rec)
        dispatcher._temporary_memory = memory

        await run(dispatcher, list(memory))

        assert memory[1:4] == [
            AiMessage(tool_execution_requests=requests),
            ToolExecutionResultMessage("c1", "sum", "2"),
            ToolExecutionResultMessage("c2", "sum", "4"),
        ]
        assert memory[4] == AiMessage(text="2 and 4")
        assert [e for e in rec.events if e[0] == "tool"] == [("tool", "2"), ("tool", "4")]

    async def test_usage_summed_over_every_turn(self):
        rec = Recorder()
        model = ScriptedChatModel(
            [
                tool_turn(sum_request(call_id="a"), usage=TokenUsage(1, 1, 2)),
                tool_turn(sum_request(call_id="b"), usage=TokenUsage(2, 2, 4)),
                text_turn("done", usage=TokenUsage(3, 3, 6)),
            ]
        )
        await run(make_dispatcher(model, rec))
        assert rec.responses[0].token_usage == TokenUsage(6, 6, 12)

    async def test_executor_receives_memory_id(self):
        rec = Recorder()
        seen = []

        async def executor(request, memory_id):
            seen.append(memory_id)
            return "ok"

        model = ScriptedChatModel([tool_turn(sum_request()), text_turn("fine")])
        await run(make_dispatcher(model, rec, executors={"sum": executor}, memory_id="user-42"))
        assert seen == ["user-42"]

    @pytest.mark.parametrize("returned,expected", [(None, ""), (5, "5"), ("five", "five")])
    async def test_executor_result_coerced_to_text(self, returned, expected):
        rec = Recorder()
        model = ScriptedChatModel([tool_turn(sum_request()), text_turn("fine")])
        await run(make_dispatcher(model, rec, executors={"sum": lambda r, m: returned}))
        assert rec.executions[0].result == expected

    async def test_tool_without_schema_skips_validation(self):
        rec = Recorder()
        request = ToolExecutionRequest(id="e", name="echo", arguments='{"anything": 1}')
        model = ScriptedChatModel([tool_turn(request), text_turn("fine")])
        await run(
            make_dispatcher(
                model, rec, specs=(), executors={"echo": lambda r, m: r.arguments}
            )
        )
        assert rec.executions[0].result == '{"anything": 1}'


class TestToolRoundFailures:
    async def test_tool_not_found(self):
        rec = Recorder()
        request = ToolExecutionRequest(id="x", name="nosuch", arguments="{}")
        model = ScriptedChatModel([tool_turn(request)])
        dispatcher = make_dispatcher(model, rec)

        await run(dispatcher)

        assert len(rec.errors) == 1
        assert isinstance(rec.errors[0], ToolNotFoundError)
        assert rec.errors[0].code == "tool_not_found"
        assert rec.responses == []
        assert model.call_count == 1
        assert dispatcher.state is DispatchState.FAILED

    async def test_executor_failure_is_wrapped(self):
        rec = Recorder()

        def explode(request, memory_id):
            raise OSError("disk on fire")

        model = ScriptedChatModel([tool_turn(sum_request())])
        await run(make_dispatcher(model, rec, executors={"sum": explode}))

        error = rec.errors[0]
        assert isinstance(error, ToolExecutionError)
        assert error.tool_name == "sum"
        assert isinstance(error.__cause__, OSError)
        assert rec.executions == []

    async def test_invalid_arguments_rejected_by_schema(self):
        rec = Recorder()
        bad = ToolExecutionRequest(id="c", name="sum", arguments='{"a": "two", "b": 3}')
        model = ScriptedChatModel([tool_turn(bad)])
        await run(make_dispatcher(model, rec))
        assert isinstance(rec.errors[0], ToolExecutionError)
        assert "Validation error" in str(rec.errors[0])

    async def test_non_object_arguments_rejected(self):
        rec = Recorder()
        bad = ToolExecutionRequest(id="c", name="sum", arguments="[2, 3]")
        model = ScriptedChatModel([tool_turn(bad)])
        await run(make_dispatcher(model, rec))
        assert "Invalid arguments for sum" in str(rec.errors[0])

    async def test_recursion_limit(self):
        rec = Recorder()
        model = ScriptedChatModel(
            [tool_turn(sum_request(call_id="a")), tool_turn(sum_request(call_id="b"))]
        )
        await run(make_dispatcher(model, rec, max_tool_rounds=1))

        assert isinstance(rec.errors[0], RecursionLimitError)
        assert "maximum of 1 tool call rounds" in str(rec.errors[0])
        assert model.call_count == 2
        assert len(rec.executions) == 1

    async def test_unbounded_rounds_when_limit_is_none(self):
        rec = Recorder()
        turns = [tool_turn(sum_request(call_id=f"c{i}")) for i in range(5)]
        model = ScriptedChatModel(turns + [text_turn("done")])
        await run(make_dispatcher(model, rec))
        assert rec.errors == []
        assert len(rec.executions) == 5


class TestErrors:
    async def test_model_error_forwarded_unchanged(self):
        rec = Recorder()
        model = ScriptedChatModel([error_turn(TimeoutError("slow"), "par")])
        await run(make_dispatcher(model, rec))
        assert rec.events == [("partial", "par"), ("error", "TimeoutError")]

    async def test_exception_escaping_model_is_wrapped(self):
        rec = Recorder()
        model = ScriptedChatModel([error_turn(RuntimeError("socket"), raise_error=True)])
        dispatcher = make_dispatcher(model, rec)

        await run(dispatcher)

        error = rec.errors[0]
        assert isinstance(error, ModelStreamError)
        assert "scripted-model" in str(error)
        assert isinstance(error.__cause__, RuntimeError)
        assert dispatcher.state is DispatchState.FAILED

    async def test_error_without_handler_is_logged(self, caplog):
        rec = Recorder()
        model = ScriptedChatModel([error_turn(RuntimeError("lost"))])
        with caplog.at_level(logging.WARNING, logger="tokenstream.streaming.dispatcher"):
            await run(make_dispatcher(model, rec, with_error_handler=False))
        assert "Ignored error" in caplog.text

    async def test_failing_error_handler_is_logged(self, caplog):
        model = ScriptedChatModel([error_turn(RuntimeError("first"))])

        def bad_handler(error):
            raise ValueError("second")

        dispatcher = StreamingResponseDispatcher(
            ServiceContext(model),
            "m",
            lambda text: None,
            error_handler=bad_handler,
            temporary_memory=[UserMessage("hi")],
        )
        with caplog.at_level(logging.ERROR, logger="tokenstream.streaming.dispatcher"):
            await run(dispatcher)

        messages = [r.getMessage() for r in caplog.records]
        assert "While handling the following error..." in messages
        assert "...the following error happened" in messages

    async def test_complete_handler_failure_reaches_error_handler(self):
        rec = Recorder()

        def bad_complete(response):
            raise RuntimeError("sink broke")

        model = ScriptedChatModel([text_turn("ok")])
        dispatcher = StreamingResponseDispatcher(
            ServiceContext(model),
            "m",
            rec.partial,
            complete_response_handler=bad_complete,
            error_handler=rec.error,
            temporary_memory=[UserMessage("hi")],
        )
        await run(dispatcher)
        assert isinstance(rec.errors[0], ModelStreamError)
        assert isinstance(rec.errors[0].__cause__, RuntimeError)
