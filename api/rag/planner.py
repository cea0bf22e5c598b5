import logging
import re
from typing import Iterable, List, Optional

from pydantic import BaseModel

from api.rag.classifier import ComplexityAssessment, EMOTION_PATTERN
from api.rag.dates import TimeRange

logger = logging.getLogger(__name__)

VECTOR_ONLY = 'vector_only'
SQL_ONLY = 'sql_only'
DUAL_PARALLEL = 'dual_parallel'
DUAL_SEQUENTIAL = 'dual_sequential'

FAST_TRACK_CONFIDENCE = 0.85

COMPLEX_PATTERN = re.compile(
    r'\b(pattern|trend|analysis|compare|correlation|top\s+\d+|most\s+(common|frequent)|when do|'
    r'what time|how often|frequency|usually|typically)\b'
)
TIME_FILTER_PATTERN = re.compile(r'\b(last|this|current|recent|past)\s+(week|month|year|day)\b')
AGGREGATION_PATTERN = re.compile(
    r'\b(top\s+\d+|most\s+(common|frequent)|average|total|sum|count|how\s+many|how\s+often|when do|'
    r'what time|frequency|usually|typically|pattern|trend)\b'
)
COUNT_PATTERN = re.compile(r'\b(how\s+many|count|number\s+of)\b')
DIRECT_PATTERN = re.compile(r'^(what\s+are\s+the\s+dates?|when\s+(is|was))\b')
TOP_N_PATTERN = re.compile(r'\btop\s+\d+\b')
FREQUENCY_PATTERN = re.compile(r'\b(when do|what time|how often|frequency|usually|typically)\b')
ANALYSIS_PATTERN = re.compile(r'\b(analyze|analysis|insight|pattern|trend)\b')
PERSONALITY_PATTERN = re.compile(
    r'\b(personality|character|trait|traits|introvert|extrovert|introverted|extroverted|temperament|'
    r'what (kind|type) of person|am i)\b'
)

ANALYTICAL_KEYWORDS = [
    'pattern', 'trend', 'analysis', 'when do', 'what time', 'how often',
    'frequency', 'usually', 'typically', 'most', 'least', 'statistics',
    'insights', 'breakdown', 'summary', 'overview', 'comparison',
]

THEME_KEYWORD_PATTERNS = [
    re.compile(r'\b(work|job|career|meeting|office|colleague|boss|project)\b'),
    re.compile(r'\b(family|mom|dad|parent|child|sibling|relative|home)\b'),
    re.compile(r'\b(health|doctor|medical|exercise|fitness|diet|wellness)\b'),
    re.compile(r'\b(relationship|friend|love|partner|dating|marriage)\b'),
    re.compile(r'\b(travel|vacation|trip|journey|adventure|explore)\b'),
    re.compile(r'\b(stress|anxiety|worry|fear|concern|pressure)\b'),
    re.compile(r'\b(happiness|joy|celebration|success|achievement|pride)\b'),
    re.compile(r'\b(learning|education|study|course|skill|knowledge)\b'),
]
ENTITY_KEYWORD_PATTERNS = [
    re.compile(r'\b(mom|dad|mother|father|parent|brother|sister|friend|colleague|boss|manager|doctor|'
               r'teacher|partner|spouse|wife|husband)\b'),
    re.compile(r'\b(home|office|gym|restaurant|hospital|school|university|park|beach|store|mall|'
               r'workplace|clinic)\b'),
]
EMOTION_KEYWORD_PATTERNS = [
    re.compile(r'\b(happy|happiness|joy|excited|elated|cheerful|delighted|joyful)\b'),
    re.compile(r'\b(sad|sadness|depressed|down|melancholy|grief|sorrow|upset)\b'),
    re.compile(r'\b(angry|anger|mad|furious|irritated|annoyed|frustrated|rage)\b'),
    re.compile(r'\b(anxious|anxiety|worried|nervous|stressed|panic|fear|fearful)\b'),
    re.compile(r'\b(love|loving|affection|caring|tender|devoted|adore)\b'),
    re.compile(r'\b(proud|pride|accomplished|confident|satisfied|achievement)\b'),
    re.compile(r'\b(grateful|thankful|appreciation|blessed|appreciative)\b'),
    re.compile(r'\b(disappointed|letdown|discouraged|dejected)\b'),
    re.compile(r'\b(confused|uncertainty|bewildered|puzzled|uncertain)\b'),
    re.compile(r'\b(calm|peaceful|relaxed|serene|tranquil|content)\b'),
]


class QueryPlan(BaseModel):
    strategy: str
    complexity: str
    requires_time_filter: bool
    requires_aggregation: bool
    search_strategy: str
    execution_mode: str
    expected_response_type: str
    theme_filters: List[str] = []
    emotion_filters: List[str] = []
    theme_keywords: List[str] = []
    entity_keywords: List[str] = []
    emotion_keywords: List[str] = []
    use_generated_sql: bool = False
    max_entries: int = 20
    confidence: float = 0.7
    time_range: Optional[TimeRange] = None
    is_personality_query: bool = False
    is_emotion_query: bool = False

    @property
    def has_filters(self) -> bool:
        return bool(self.theme_filters or self.emotion_filters)


def _extract_keywords(message: str, patterns) -> List[str]:
    keywords: List[str] = []
    for pattern in patterns:
        for match in pattern.finditer(message):
            word = match.group(0).lower()
            if word not in keywords:
                keywords.append(word)
    return keywords


def extract_theme_keywords(message: str) -> List[str]:
    return _extract_keywords(message.lower(), THEME_KEYWORD_PATTERNS)


def extract_entity_keywords(message: str) -> List[str]:
    return _extract_keywords(message.lower(), ENTITY_KEYWORD_PATTERNS)


def extract_emotion_keywords(message: str) -> List[str]:
    return _extract_keywords(message.lower(), EMOTION_KEYWORD_PATTERNS)


def _query_complexity(lower: str) -> str:
    question_marks = lower.count('?')
    and_markers = len(re.findall(r'\band\b', lower))
    also_markers = len(re.findall(r'\balso\b', lower))

    if question_marks > 1 or (and_markers > 0 and (question_marks > 0 or also_markers > 0)):
        return 'multi_part'
    if COMPLEX_PATTERN.search(lower):
        return 'complex'
    return 'simple'


THEME_STOPWORDS = {
    'and', 'the', 'for', 'with', 'from', 'about', 'into', 'over',
    'our', 'your', 'their', 'its', 'are', 'was', 'not', 'but', 'all',
}


def _match_themes(lower: str, known_themes: Iterable[str]) -> List[str]:
    matches = []
    for theme in known_themes:
        words = [w for w in re.split(r'[\s&]+', theme.lower()) if len(w) > 2 and w not in THEME_STOPWORDS]
        if any(re.search(r'\b' + re.escape(word) + r'\b', lower) for word in words):
            matches.append(theme)
    return matches


def _match_emotions(lower: str, known_emotions: Iterable[str]) -> List[str]:
    return [
        emotion for emotion in known_emotions
        if re.search(r'\b' + re.escape(emotion.lower()) + r'\b', lower)
    ]


def max_entries_for(search_strategy: str, complexity: str, has_filters: bool) -> int:
    if search_strategy == DUAL_PARALLEL and has_filters:
        return 150
    if search_strategy == DUAL_PARALLEL:
        return 100
    if complexity == 'complex':
        return 50
    return 20


def plan_query(
    message: str,
    time_range: Optional[TimeRange] = None,
    known_themes: Iterable[str] = (),
    known_emotions: Iterable[str] = (),
    complexity: Optional[ComplexityAssessment] = None
) -> QueryPlan:
    """
    Build a search plan for a journal question.

    Known themes and emotions come from the user's stored entries and the
    emotion catalogue; they turn into SQL-side filters when the message
    mentions them.
    """
    lower = message.lower().strip()

    query_complexity = _query_complexity(lower)
    requires_time_filter = bool(time_range) or bool(TIME_FILTER_PATTERN.search(lower))
    requires_aggregation = bool(AGGREGATION_PATTERN.search(lower))
    theme_filters = _match_themes(lower, known_themes)
    emotion_filters = _match_emotions(lower, known_emotions)
    has_filters = bool(theme_filters or emotion_filters)
    is_count_query = bool(COUNT_PATTERN.search(lower))

    if is_count_query and not has_filters:
        search_strategy = SQL_ONLY
    elif query_complexity in ('complex', 'multi_part') or requires_aggregation or has_filters:
        search_strategy = DUAL_PARALLEL
    elif requires_time_filter:
        search_strategy = DUAL_SEQUENTIAL
    elif (complexity is not None and complexity.label == 'simple'
          and complexity.search_confidence > FAST_TRACK_CONFIDENCE):
        search_strategy = VECTOR_ONLY
    else:
        search_strategy = DUAL_PARALLEL

    execution_mode = 'sequential' if search_strategy == DUAL_SEQUENTIAL else 'parallel'

    if DIRECT_PATTERN.search(lower):
        expected_response_type = 'direct'
    elif requires_aggregation or TOP_N_PATTERN.search(lower) or FREQUENCY_PATTERN.search(lower):
        expected_response_type = 'aggregated'
    elif ANALYSIS_PATTERN.search(lower):
        expected_response_type = 'analysis'
    else:
        expected_response_type = 'narrative'

    confidence = 0.7
    if theme_filters:
        confidence += 0.1
    if emotion_filters:
        confidence += 0.1
    if query_complexity == 'simple':
        confidence += 0.05
    confidence = min(round(confidence, 4), 1.0)

    if query_complexity == 'multi_part':
        strategy = 'dual_search_database_segmented_processing'
    elif expected_response_type == 'aggregated':
        strategy = 'dual_search_database_aggregation'
    elif expected_response_type == 'analysis':
        strategy = 'dual_search_database_pattern_analysis'
    elif requires_time_filter:
        strategy = 'dual_search_database_time_filtered'
    elif has_filters:
        strategy = 'dual_search_database_filtered'
    else:
        strategy = 'dual_search_database_aware'

    plan = QueryPlan(
        strategy=strategy,
        complexity=query_complexity,
        requires_time_filter=requires_time_filter,
        requires_aggregation=requires_aggregation,
        search_strategy=search_strategy,
        execution_mode=execution_mode,
        expected_response_type=expected_response_type,
        theme_filters=theme_filters,
        emotion_filters=emotion_filters,
        theme_keywords=extract_theme_keywords(lower),
        entity_keywords=extract_entity_keywords(lower),
        emotion_keywords=extract_emotion_keywords(lower),
        use_generated_sql=requires_aggregation or search_strategy == SQL_ONLY,
        max_entries=max_entries_for(search_strategy, query_complexity, has_filters),
        confidence=confidence,
        time_range=time_range,
        is_personality_query=bool(PERSONALITY_PATTERN.search(lower)),
        is_emotion_query=bool(EMOTION_PATTERN.search(lower)) or bool(emotion_filters)
    )

    logger.info(
        f"Query plan: {plan.search_strategy} ({plan.strategy}), complexity {plan.complexity}, "
        f"response {plan.expected_response_type}, max entries {plan.max_entries}"
    )
    return plan


def should_use_analytical_formatting(plan: QueryPlan, message: str) -> bool:
    lower = message.lower()
    has_analytical_keywords = any(keyword in lower for keyword in ANALYTICAL_KEYWORDS)
    return (
        plan.expected_response_type in ('analysis', 'aggregated')
        or has_analytical_keywords
        or (plan.has_filters and plan.complexity != 'simple')
    )
