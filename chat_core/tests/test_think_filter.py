import random

from chat_core.streaming.think_filter import FilterState, ThinkTagFilter, clean_think_tags


def _run(chunks):
    f = ThinkTagFilter()
    deltas = [f.feed(c) for c in chunks]
    deltas.append(f.finish())
    return f, deltas


def test_marker_split_across_chunks_never_leaks():
    f = ThinkTagFilter()
    assert f.feed("Hello ") == "Hello "
    assert f.feed("<thi") == ""
    assert f.feed("nk>secret</thi") == ""
    assert f.state == FilterState.SUPPRESSING
    assert f.feed("nk> world") == " world"
    assert f.state == FilterState.PASSTHROUGH
    assert f.finish() == ""
    assert f.displayed == "Hello  world"
    assert "secret" not in f.displayed


def test_leading_think_block_and_blank_lines_are_withheld():
    _, deltas = _run(["<think>", "plan the answer", "</think>", "\n\n", "Result", " done"])
    assert "".join(deltas) == "Result done"
    assert deltas[:4] == ["", "", "", ""]


def test_partial_marker_prefix_is_held_then_released():
    f = ThinkTagFilter()
    assert f.feed("a <") == "a "
    assert f.feed(" b") == "< b"
    assert f.displayed == "a < b"


def test_case_insensitive_markers():
    _, deltas = _run(["x<THINK>hidden</Think>y"])
    assert "".join(deltas) == "xy"


def test_unterminated_open_marker_dropped_at_finish():
    f, deltas = _run(["answer ", "<think>never closed"])
    assert "".join(deltas) == "answer "
    assert f.displayed == "answer "


def test_trailing_partial_marker_flushed_at_finish():
    f, deltas = _run(["value <th"])
    assert deltas == ["value ", "<th"]
    assert f.displayed == "value <th"


def test_orphan_close_drops_everything_before_it():
    assert clean_think_tags("reasoning leaked</think>Answer") == "Answer"
    assert clean_think_tags("Answer<think>cut off") == "Answer"


def test_clean_think_tags_removes_complete_spans_and_trims():
    assert clean_think_tags("<think>x</think>Result") == "Result"
    assert clean_think_tags("<think>\nmulti\nline\n</think>\n\nA<think>b</think>C\n") == "AC"
    assert clean_think_tags("  plain  ", strip=False) == "  plain  "


def test_displayed_output_never_retracts():
    raw = "Intro <think>alpha</think>body <think>beta</think>end<think>tail"
    f = ThinkTagFilter()
    seen = ""
    for ch in raw:
        f.feed(ch)
        assert f.displayed.startswith(seen)
        seen = f.displayed
    f.finish()
    assert f.displayed.startswith(seen)
    assert f.displayed == "Intro body end"


def test_end_state_is_chunk_invariant():
    rng = random.Random(7)
    samples = [
        "Hello <think>secret</think> world",
        "<think>plan</think>\n\nStep 1. do\nStep 2. <b>done</b>",
        "a<think>b</think>c<think>d</think>e",
        "no markers at all < not a tag >",
        "text then <think>unfinished reasoning",
        "<think></think>",
    ]
    for raw in samples:
        expected = clean_think_tags(raw, strip=False).lstrip()
        for _ in range(30):
            cuts = sorted(rng.sample(range(1, len(raw)), k=min(len(raw) - 1, rng.randint(1, 6))))
            chunks = [raw[i:j] for i, j in zip([0] + cuts, cuts + [len(raw)])]
            f, deltas = _run(chunks)
            assert f.displayed == expected
            assert "".join(deltas) == expected


def test_feed_after_finish_raises():
    f = ThinkTagFilter()
    f.finish()
    try:
        f.feed("x")
    except ValueError:
        pass
    else:
        raise AssertionError("feed after finish should fail")
