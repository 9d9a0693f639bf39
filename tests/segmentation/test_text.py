from scenechain.segmentation.text import (
    detect_emotional_intensity,
    estimate_duration,
    estimate_segment_count,
    estimate_tokens,
    find_scene_markers,
    has_dialogue,
    split_sentences,
    starts_with_scene_marker,
    truncate_to_tokens,
)


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("hi") == 1
    assert estimate_tokens("x" * 40) == 10


def test_truncate_respects_limit():
    text = "word " * 100
    out = truncate_to_tokens(text, 10)
    assert out.endswith("...")
    assert estimate_tokens(out) <= 10
    assert truncate_to_tokens("short", 10) == "short"


def test_estimate_duration_uses_words_per_second():
    assert estimate_duration("one two three four five") == 2.0


def test_split_sentences_keeps_scene_headings_together():
    script = "INT. KITCHEN - DAY. Maria cooks. She hums!\n\nEXT. STREET - NIGHT\nRain falls. \"Run,\" he says."
    sentences = split_sentences(script)
    assert sentences[0] == "INT. KITCHEN - DAY."
    assert "Maria cooks." in sentences
    assert "She hums!" in sentences
    assert sentences[-1] == '"Run," he says.'


def test_paragraph_break_is_a_sentence_boundary():
    sentences = split_sentences("First paragraph without period\n\nSecond paragraph")
    assert sentences == ["First paragraph without period", "Second paragraph"]


def test_scene_markers():
    script = "FADE IN:\nINT. OFFICE - DAY\nJohn types.\nCUT TO:\nEXT. PARK"
    assert find_scene_markers(script) == ["FADE IN:", "INT. OFFICE - DAY", "CUT TO:", "EXT. PARK"]
    assert starts_with_scene_marker("  int. office")
    assert not starts_with_scene_marker("Internal memo")


def test_emotional_intensity_levels():
    assert detect_emotional_intensity("The man walks to the store and buys some bread.") < 0.3
    assert detect_emotional_intensity("She screams in terror! Her heart races with panic!") > 0.5
    assert detect_emotional_intensity("FURY! RAGE! He EXPLODES with devastating violence!") > 0.7
    assert detect_emotional_intensity("") == 0.0


def test_dialogue_detection():
    assert has_dialogue('She said "hello" quietly.')
    assert has_dialogue("JOHN: Where were you?")
    assert not has_dialogue("The door creaks open and wind blows in.")


def test_estimate_segment_count():
    script = " ".join(["word"] * 100)
    assert estimate_segment_count(script, 4.0, 100) == 10
    assert estimate_segment_count(script, 4.0, 3) == 3
    assert estimate_segment_count("", 4.0, 3) == 0
