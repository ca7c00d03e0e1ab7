from __future__ import annotations

from typing import Any

from memworker.dispatch import DispatchPolicy
from memworker.items import ObservationItem, SummarizeItem, decode_pending_item
from memworker.protocols import ObservationPromptContext
from memworker.session import Session


class RecordingPrompts:
    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    def init(self, project, content_session_id, user_prompt, mode) -> str:
        self.calls.append(("init", (project, content_session_id, user_prompt, mode)))
        return f"init:{user_prompt}"

    def continuation(self, user_prompt, prompt_number, content_session_id, mode) -> str:
        self.calls.append(("continuation", (user_prompt, prompt_number, content_session_id, mode)))
        return f"continue:{prompt_number}"

    def observation(self, context: ObservationPromptContext) -> str:
        self.calls.append(("observation", context))
        return f"observe:{context.tool_name}"

    def summary(self, project, mode, last_assistant_message) -> str:
        self.calls.append(("summary", (project, mode, last_assistant_message)))
        return f"summarize:{last_assistant_message}"


def _session(**kwargs: Any) -> Session:
    return Session(session_db_id=7, content_session_id="content-7", project="demo", **kwargs)


def test_observation_renders_json_encoded_tool_fields() -> None:
    prompts = RecordingPrompts()
    policy = DispatchPolicy(prompts)
    item = ObservationItem(
        tool_name="Read",
        tool_input={"path": "a.py"},
        tool_output="contents",
        created_at_epoch=1700000000000,
        cwd="/repo",
    )

    prompt = policy.render(item, _session(), mode=None, original_timestamp=None)

    assert prompt == "observe:Read"
    _, context = prompts.calls[0]
    assert context == ObservationPromptContext(
        tool_name="Read",
        tool_input='{"path": "a.py"}',
        tool_output='"contents"',
        created_at_epoch=1700000000000,
        cwd="/repo",
    )


def test_observation_without_timestamp_uses_pending_watermark() -> None:
    prompts = RecordingPrompts()
    item = ObservationItem(tool_name="Bash", tool_input=None, tool_output=None)

    DispatchPolicy(prompts).render(item, _session(), mode=None, original_timestamp=42)

    assert prompts.calls[0][1].created_at_epoch == 42


def test_observation_advances_prompt_number_but_never_backwards() -> None:
    policy = DispatchPolicy(RecordingPrompts())
    session = _session(last_prompt_number=3)

    policy.render(
        ObservationItem("Edit", {}, {}, prompt_number=5), session, mode=None, original_timestamp=1
    )
    assert session.last_prompt_number == 5

    policy.render(
        ObservationItem("Edit", {}, {}, prompt_number=4), session, mode=None, original_timestamp=1
    )
    assert session.last_prompt_number == 5

    policy.render(ObservationItem("Edit", {}, {}), session, mode=None, original_timestamp=1)
    assert session.last_prompt_number == 5


def test_summarize_uses_project_mode_and_last_message() -> None:
    prompts = RecordingPrompts()
    mode = {"name": "code"}

    prompt = DispatchPolicy(prompts).render(
        SummarizeItem("all done"), _session(), mode=mode, original_timestamp=None
    )

    assert prompt == "summarize:all done"
    assert prompts.calls == [("summary", ("demo", mode, "all done"))]


def test_unknown_items_are_skipped_without_side_effects() -> None:
    prompts = RecordingPrompts()
    session = _session(last_prompt_number=2)

    assert DispatchPolicy(prompts).render({"type": "init"}, session, None, None) is None
    assert prompts.calls == []
    assert session.last_prompt_number == 2


def test_opening_prompt_depends_on_prompt_number() -> None:
    prompts = RecordingPrompts()
    policy = DispatchPolicy(prompts)

    assert policy.opening_prompt(_session(user_prompt="fix it"), "mode") == "init:fix it"
    assert policy.opening_prompt(_session(last_prompt_number=4), "mode") == "continue:4"
    assert prompts.calls[0] == ("init", ("demo", "content-7", "fix it", "mode"))


def test_decode_pending_item_rows() -> None:
    observation = decode_pending_item(
        {
            "type": "observation",
            "tool_name": "Write",
            "tool_input": {"path": "b.py"},
            "tool_response": {"ok": True},
            "created_at_epoch": "1700000000001",
            "cwd": "",
            "prompt_number": 3,
        }
    )
    assert observation == ObservationItem(
        tool_name="Write",
        tool_input={"path": "b.py"},
        tool_output={"ok": True},
        created_at_epoch=1700000000001,
        cwd=None,
        prompt_number=3,
    )
    assert decode_pending_item({"type": "summarize", "last_assistant_message": "bye"}) == (
        SummarizeItem("bye")
    )
    assert decode_pending_item({"type": "init"}) is None
