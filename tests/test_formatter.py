from api.rag.formatter import (
    BASE_PROMPT, EMOTION_FOCUS, MEDITATION_FOCUS, PERSONALITY_FOCUS,
    build_system_prompt, determine_response_format
)
from api.rag.planner import plan_query


def test_analytical_format():
    fmt = determine_response_format("Analyze my mood patterns")
    assert fmt.format_type == 'analytical'
    assert fmt.include_headers
    assert fmt.use_bullet_points
    assert fmt.include_summary


def test_structured_format_for_multi_part_plan():
    message = "How was work? And how was my family?"
    fmt = determine_response_format(message, plan_query(message))
    assert fmt.format_type == 'structured'
    assert fmt.include_summary


def test_conversational_format():
    fmt = determine_response_format("beach trip memories")
    assert fmt.format_type == 'conversational'
    assert fmt.complexity == 'simple'
    assert not fmt.include_headers
    assert not fmt.include_summary


def test_prompt_for_personality_query():
    message = "Am I an introvert?"
    plan = plan_query(message)
    prompt = build_system_prompt(determine_response_format(message, plan), message, plan)

    assert prompt.startswith(BASE_PROMPT)
    assert PERSONALITY_FOCUS in prompt
    assert EMOTION_FOCUS not in prompt
    assert 'USER\'S QUERY: "Am I an introvert?"' in prompt


def test_prompt_for_emotion_and_meditation():
    message = "how did I feel after meditation"
    plan = plan_query(message)
    prompt = build_system_prompt(determine_response_format(message, plan), message, plan)

    assert EMOTION_FOCUS in prompt
    assert MEDITATION_FOCUS in prompt


def test_simple_prompt_is_length_limited():
    message = "beach trip memories"
    prompt = build_system_prompt(determine_response_format(message), message)
    assert "under 200 words" in prompt
    assert "FORMATTING GUIDELINES - CONVERSATIONAL" in prompt
