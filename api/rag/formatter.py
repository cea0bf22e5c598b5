import logging
from typing import Optional

from pydantic import BaseModel

from api.rag.classifier import assess_complexity
from api.rag.planner import QueryPlan

logger = logging.getLogger(__name__)

BASE_PROMPT = "You are SOULo, an empathetic AI companion helping someone understand their journal entries."

FORMAT_GUIDELINES = {
    'analytical': """FORMATTING GUIDELINES - ANALYTICAL:
- Use ## markdown headers for main sections (choose names that fit the analysis requested)
- Use - for bullet points
- Use **bold text** for key insights and data points
- Focus on data-driven insights and patterns from the journal entries
- Support findings with specific examples and dates when available""",
    'structured': """FORMATTING GUIDELINES - STRUCTURED:
- Use ## markdown headers for main sections
- Use - for bullet points with **bold** key terms
- Provide specific examples with dates
- Address every aspect of the question in its own section""",
    'narrative': """FORMATTING GUIDELINES - NARRATIVE:
- Write in flowing paragraphs with **bold emphasis** on key insights
- Use ## headers sparingly for major topic shifts
- Include specific dates and examples naturally in the text
- Tell the story of their journal journey in a warm, personal way""",
    'conversational': """FORMATTING GUIDELINES - CONVERSATIONAL:
- Use natural language with **bold emphasis** on important points
- Include specific examples and dates in a conversational tone
- Keep bullet points minimal but use - when listing items
- Respond as if having a supportive conversation with a friend""",
}

PERSONALITY_FOCUS = """Focus on personality analysis:
- Emotional patterns and what they reveal about personality
- Behavioral traits and decision-making patterns
- Personal values evident in the writing
- Growth opportunities (framed positively)
- Specific strengths demonstrated"""

EMOTION_FOCUS = """Focus on emotional patterns:
- Emotional trends and triggers
- How emotions are processed and managed
- Patterns the user might not be aware of
- Actionable insights for emotional wellbeing"""

MEDITATION_FOCUS = """Meditation analysis:
- Look for patterns in emotional states before and after meditation
- Note frequency and consistency of practice
- Identify specific benefits and challenges"""

RESPONSE_SHAPES = {
    'direct': "Answer directly and briefly; lead with the specific dates or facts asked for.",
    'aggregated': "Lead with the counts, frequencies or rankings, then a short interpretation.",
    'analysis': "Identify the patterns across entries and what they suggest.",
    'narrative': "Answer the question, citing specific entries.",
}


class ResponseFormat(BaseModel):
    format_type: str
    complexity: str
    use_structured_format: bool
    include_headers: bool
    use_bullet_points: bool
    include_insights: bool
    include_summary: bool


def determine_response_format(message: str, plan: Optional[QueryPlan] = None,
                              sub_question_count: int = 0) -> ResponseFormat:
    assessment = assess_complexity(message, sub_question_count)
    flags = assessment.flags
    complexity = assessment.label

    is_complex_analysis = flags['is_complex_analysis']
    requires_structure = flags['requires_structured_format']
    is_multi_question = flags['is_multi_question'] or (plan is not None and plan.complexity == 'multi_part')

    if is_complex_analysis or requires_structure or assessment.score >= 3:
        format_type = 'analytical'
    elif complexity == 'complex' or is_multi_question or flags['has_multiple_aspects']:
        format_type = 'structured'
    elif flags['has_personal_pronouns'] and complexity == 'simple':
        format_type = 'narrative'
    else:
        format_type = 'conversational'

    fmt = ResponseFormat(
        format_type=format_type,
        complexity=complexity,
        use_structured_format=format_type in ('analytical', 'structured') or complexity != 'simple',
        include_headers=format_type in ('analytical', 'structured') or requires_structure,
        use_bullet_points=format_type in ('analytical', 'structured') or flags['has_multiple_aspects'],
        include_insights=complexity != 'simple' or is_complex_analysis or format_type == 'analytical',
        include_summary=is_multi_question or complexity == 'complex' or format_type == 'analytical'
    )
    logger.info(f"Response format: {fmt.format_type} ({fmt.complexity})")
    return fmt


def build_system_prompt(fmt: ResponseFormat, message: str, plan: Optional[QueryPlan] = None) -> str:
    sections = [BASE_PROMPT, FORMAT_GUIDELINES[fmt.format_type]]

    if plan is not None:
        if plan.is_personality_query:
            sections.append(PERSONALITY_FOCUS)
        elif plan.is_emotion_query:
            sections.append(EMOTION_FOCUS)
        sections.append(RESPONSE_SHAPES.get(plan.expected_response_type, RESPONSE_SHAPES['narrative']))
        if plan.complexity == 'multi_part':
            sections.append(
                "The question has several parts. Address each part, then combine the findings."
            )

    lower = message.lower()
    if 'meditation' in lower or 'practice' in lower:
        sections.append(MEDITATION_FOCUS)

    closing = (
        f"USER'S QUERY: \"{message}\"\n\n"
        f"Provide a {fmt.complexity} answer grounded in the journal entries. "
        "Be supportive and reference specific examples. Never invent entries."
    )
    if fmt.include_summary:
        closing += " End with a one or two sentence summary."
    if fmt.complexity == 'simple':
        closing += " Keep the response under 200 words."
    sections.append(closing)

    return '\n\n'.join(sections)
