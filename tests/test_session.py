from __future__ import annotations

import threading

import pytest

from memworker.session import Session, Transcript, Turn


def test_turn_rejects_unknown_role() -> None:
    with pytest.raises(ValueError):
        Turn("system", "hi")  # type: ignore[arg-type]


def test_exchanges_from_threads_stay_paired() -> None:
    transcript = Transcript([Turn.user("init"), Turn.assistant("ok")])

    def worker(index: int) -> None:
        for step in range(50):
            transcript.append_exchange(f"p{index}-{step}", f"r{index}-{step}")

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    turns = transcript.snapshot()
    assert len(turns) == 2 + 4 * 50 * 2
    assert turns[:2] == [Turn.user("init"), Turn.assistant("ok")]
    for prompt, reply in zip(turns[2::2], turns[3::2], strict=True):
        assert prompt.role == "user"
        assert reply.role == "assistant"
        assert reply.text == "r" + prompt.text[1:]


def test_snapshot_and_head_are_copies() -> None:
    transcript = Transcript()
    transcript.append(Turn.user("a"))
    snapshot = transcript.snapshot()
    head = transcript.head(2)

    transcript.append(Turn.assistant("b"))

    assert snapshot == [Turn.user("a")]
    assert head == [Turn.user("a")]
    assert len(transcript) == 2
    assert list(transcript) == [Turn.user("a"), Turn.assistant("b")]


def test_usage_and_prompt_number_bookkeeping() -> None:
    session = Session(session_db_id=1, content_session_id="c")
    session.record_usage(10, 2)
    session.record_usage(5, 1)
    session.advance_prompt_number(3)
    session.advance_prompt_number(2)

    assert (session.cumulative_input_tokens, session.cumulative_output_tokens) == (15, 3)
    assert session.last_prompt_number == 3
