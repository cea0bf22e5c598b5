import logging
import re
from typing import Dict, List, Pattern, Tuple

from pydantic import BaseModel

from lib.config import get_settings

logger = logging.getLogger(__name__)

JOURNAL_SPECIFIC = 'JOURNAL_SPECIFIC'
GENERAL = 'GENERAL'

# (pattern, weight, reason)
PERSONAL_INDICATORS: List[Tuple[Pattern, float, str]] = [
    (re.compile(r'\bam i\b|\bdo i\b'), 0.4, "Question about personal traits or preferences"),
    (re.compile(r'\bmy (mental health|wellbeing|wellness|anxiety|depression|stress)\b'), 0.5,
     "Personal mental health question"),
    (re.compile(r'\bhow (can|could|should) i\b|\bwhat should i do\b'), 0.35,
     "Seeking personal advice or self-improvement"),
    (re.compile(r'\bhow (do|did) i feel\b|\bmy emotions\b|\bi feel\b'), 0.4, "Question about personal emotions"),
    (re.compile(r'\b(pattern|habit|routine|tendency|typically|usually|often)\b'), 0.3,
     "Question about personal patterns or habits"),
    (re.compile(r'\bi\b.{1,30}\b(anxiety|stress|depression|mood|emotion|mental)\b'), 0.4,
     "Personal context with mental health terms"),
    (re.compile(r'\b(journal|entry|entries|wrote|written|recorded)\b'), 0.45,
     "Explicit reference to journal entries"),
    (re.compile(r'\bhow (have|did) i\b.{1,20}\b(recently|lately|past|week|month|year)\b'), 0.35,
     "Question about personal changes over time"),
    (re.compile(r'\b(intro|extro)vert\b'), 0.5, "Question about introversion/extroversion personality traits"),
    (re.compile(r'\bdo i (like|enjoy|prefer)\b.{0,15}\bpeople\b'), 0.5, "Question about social preferences"),
    (re.compile(r'\bwhat (type|kind) of person\b'), 0.45, "Question about personality type"),
    (re.compile(r'\bmy (personality|character|nature|temperament)\b'), 0.5,
     "Question about personal character traits"),
    (re.compile(r'\b(how|do) i\b.{0,20}\b(handle|manage|deal with|approach) social\b'), 0.45,
     "Question about handling social situations"),
    (re.compile(r'\b(energized|drained|tired)\b.{0,20}\b(after|by|from|when)\b.{0,20}'
                r'\b(social|people|interaction|talking|conversation)\b'), 0.5,
     "Question about social energy levels"),
]

GENERAL_INDICATORS: List[Tuple[Pattern, float, str]] = [
    (re.compile(r'\bwhat (is|are)\b(?!.{0,15}\b(i|me|my|myself)\b)'), -0.3, "General definitional question"),
    (re.compile(r'\bhow (to|do you|does one|can one|can people)\b'), -0.25, "General how-to question"),
    (re.compile(r'\b(people|humans|individuals|everyone|most people)\b'), -0.2,
     "Question about people in general, not self"),
    (re.compile(r'^.{1,15}$'), -0.15, "Very short query lacking personal context"),
]

STRONG_PERSONAL_PATTERNS = [
    re.compile(r'\bam i\b'),
    re.compile(r'\bdo i\b.{1,20}\b(like|enjoy|prefer|tend to|usually)\b'),
    re.compile(r'\bhow (can|could|should) i\b'),
    re.compile(r'\bwhat should i do\b'),
    re.compile(r'\bhelp (me|my)\b'),
    re.compile(r'\b(intro|extro)vert\b'),
    re.compile(r'\bwhat (kind|type) of person am i\b'),
]

MENTAL_HEALTH_TOPIC = re.compile(r'\b(mental health|anxiety|depression|stress)\b')
FIRST_PERSON = re.compile(r'\b(i|me|my|myself)\b')

MENTAL_HEALTH_TERMS = [
    'anxiety', 'anxious', 'depression', 'depressed', 'stress', 'stressed',
    'mood', 'emotion', 'feeling', 'mental health', 'wellbeing', 'well-being',
    'therapy', 'therapist', 'counseling', 'psychiatrist', 'psychologist',
    'sleep', 'insomnia', 'tired', 'exhaustion', 'burnout', 'overwhelm',
    'overthinking', 'ruminating', 'worry', 'worrying', 'trauma',
    'self-care', 'self care', 'mindfulness', 'meditation', 'breathing',
    'coping', 'cope', 'healing', 'recovery', 'growth', 'improve',
    'relationship', 'friendship', 'family', 'partner', 'work-life',
    'balance', 'boundaries', 'communication',
    'help me', 'advice', 'suggestion', 'recommend', 'strategy', 'technique',
    'better', 'healthier', 'calm', 'relax', 'peace',
]

# Response-complexity indicators
COMPLEX_ANALYSIS = re.compile(
    r'analy[sz]e|analysis|patterns|trends|comparison|insights|overall|generally|typically|usually|'
    r'how am i|what has|when do|how often|frequency|breakdown|summary|overview|statistics|what time|'
    r'\bmost\b|\bleast\b|improve|decline|changed|better|worse|since|throughout|during|recently|lately'
)
MULTIPLE_ASPECTS = re.compile(
    r'positive|negative|\bgood\b|\bbad\b|better|worse|improve|decline|\bboth\b|different|various|multiple|'
    r'aspects|sides|perspectives|areas|issues|topics|themes|\bways\b|before and after|then and now|comparison'
)
STRUCTURED_FORMAT = re.compile(
    r'breakdown|\blist\b|explain|describe.*patterns|show me|tell me about.*trends|what are|identify|'
    r'categorize|organize|structure'
)
CAUSAL = re.compile(
    r'why.*happening|what.*causing|relationship.*between|correlation|impact.*on|effect.*of'
)
TEMPORAL_PROGRESSION = re.compile(
    r'over time|timeline|progression|evolution|development|journey|growth|change'
)
MULTI_FACTOR = re.compile(
    r'different.*ways|various.*methods|multiple.*factors|several.*reasons|many.*aspects'
)
IMPACT = re.compile(
    r'impact|effect|influence|affect|outcome|result|relationship|consequence|leads to|results in|causes'
)
PERSONAL_PRONOUNS = re.compile(r"\b(i|my|me|myself|i'm|i've|i'll|i'd)\b")

EMOTION_WORDS = [
    'feel', 'feeling', 'felt', 'emotion', 'emotional', 'mood', 'happy', 'sad',
    'angry', 'upset', 'joy', 'joyful', 'depressed', 'anxious', 'anxiety', 'stress',
    'stressed', 'worried', 'fear', 'scared', 'excited', 'calm', 'peaceful', 'love',
    'loved', 'hate', 'hated', 'frustrated', 'content', 'satisfaction', 'dissatisfaction',
    'positive', 'negative', 'neutral', 'sentiment',
]
THEME_WORDS = [
    'theme', 'topic', 'subject', 'about', 'regarding', 'related to', 'concerning',
    'mention of', 'talking about', 'wrote about', 'journaled about', 'recurring',
    'pattern', 'consistent', 'regularly', 'common',
]
QUANTITATIVE_WORDS = [
    'how many', 'how much', 'count', 'number of', 'frequency', 'times', 'often',
    'percentage', 'most', 'least', 'average', 'mean', 'median', 'total', 'sum',
    'statistics', 'stats', 'trend', 'increase', 'decrease', 'change', 'rate',
    'top', 'bottom', 'ranked', 'ranking', 'weekly', 'monthly', 'daily', 'yearly',
]
AGGREGATION_WORDS = [
    'all', 'every', 'total', 'combined', 'overall', 'summary', 'summarize',
    'average', 'trend', 'across', 'throughout', 'entire', 'whole',
    'most', 'least', 'frequently', 'rarely', 'never', 'always',
    'maximum', 'minimum', 'highest', 'lowest', 'peak', 'aggregate',
]
TIME_WORDS = [
    'yesterday', 'today', 'this morning', 'this afternoon', 'this evening',
    'last night', 'last week', 'last month', 'last year', 'past week',
    'past month', 'past year', 'recent', 'recently', 'latest', 'newest',
    'oldest', 'earlier', 'before', 'after', 'during', 'between', 'since',
    'previous', 'date', 'period', 'monday', 'tuesday', 'wednesday', 'thursday',
    'friday', 'saturday', 'sunday', 'january', 'february', 'march', 'april',
    'june', 'july', 'august', 'september', 'october', 'november', 'december',
]
COMPARISON_WORDS = [
    'than', 'compared to', 'versus', 'vs', 'comparison', 'compare',
    'difference', 'different', 'similar', 'similarity', 'same as',
    'unlike', 'better', 'worse', 'higher', 'lower', 'prefer', 'preference',
]
PERSON_WORDS = [
    'who', 'person', 'people', 'friend', 'family', 'relative', 'parent', 'child',
    'mother', 'father', 'sister', 'brother', 'partner', 'spouse', 'husband', 'wife',
    'colleague', 'coworker', 'boss', 'manager', 'teacher', 'doctor', 'therapist', 'neighbor',
]
FREQUENCY_WORDS = [
    'often', 'frequently', 'regularly', 'occasionally', 'sometimes', 'rarely',
    'seldom', 'never', 'always', 'usually', 'generally', 'typically', 'commonly',
    'consistently', 'every day', 'every week', 'every month', 'daily', 'weekly', 'monthly',
]
ENTITY_WORDS = [
    'location', 'place', 'where', 'city', 'country', 'restaurant', 'store', 'shop',
    'organization', 'company', 'business', 'school', 'university',
    'hospital', 'clinic', 'event', 'meeting', 'appointment', 'party', 'celebration',
]


def _word_pattern(words: List[str]) -> Pattern:
    return re.compile(r'\b(' + '|'.join(re.escape(w) for w in sorted(words, key=len, reverse=True)) + r')\b')


EMOTION_PATTERN = _word_pattern(EMOTION_WORDS)
THEME_PATTERN = _word_pattern(THEME_WORDS)
QUANTITATIVE_PATTERN = _word_pattern(QUANTITATIVE_WORDS)
AGGREGATION_PATTERN = _word_pattern(AGGREGATION_WORDS)
TIME_PATTERN = _word_pattern(TIME_WORDS)
COMPARISON_PATTERN = _word_pattern(COMPARISON_WORDS)
PERSON_PATTERN = _word_pattern(PERSON_WORDS)
FREQUENCY_PATTERN = _word_pattern(FREQUENCY_WORDS)
ENTITY_PATTERN = _word_pattern(ENTITY_WORDS)


class MessageClassification(BaseModel):
    category: str
    confidence: float
    should_use_journal: bool
    reasoning: str


class ComplexityAssessment(BaseModel):
    label: str
    score: int
    vector_threshold: float
    match_count: int
    search_confidence: float
    flags: Dict[str, bool] = {}


class QueryTypes(BaseModel):
    is_emotion_focused: bool = False
    is_theme_focused: bool = False
    is_quantitative: bool = False
    needs_data_aggregation: bool = False
    is_time_focused: bool = False
    is_why_question: bool = False
    is_how_question: bool = False
    is_what_question: bool = False
    is_comparison: bool = False
    is_person_focused: bool = False
    is_frequency_focused: bool = False
    is_entity_focused: bool = False


def classify_message(message: str) -> MessageClassification:
    """
    Decide whether a chat message should be answered from the user's journal
    or as a general question.
    """
    lower = message.lower().strip()
    confidence = 0.4
    journal_reasons: List[str] = []
    general_reasons: List[str] = []

    for pattern, weight, reason in PERSONAL_INDICATORS:
        if pattern.search(lower):
            confidence += weight
            journal_reasons.append(reason)

    for pattern, weight, reason in GENERAL_INDICATORS:
        if pattern.search(lower):
            confidence += weight
            general_reasons.append(reason)

    if MENTAL_HEALTH_TOPIC.search(lower) and not FIRST_PERSON.search(lower):
        confidence -= 0.1
        general_reasons.append("Mental health topic without personal context")

    if any(pattern.search(lower) for pattern in STRONG_PERSONAL_PATTERNS):
        confidence = max(confidence, 0.8)
        journal_reasons.append("Strong personal context indicator")

    if confidence > 0.5:
        category = JOURNAL_SPECIFIC
        reasoning = '; '.join(journal_reasons[:3]) or "Overall analysis suggests personal nature"
    else:
        category = GENERAL
        reasoning = '; '.join(general_reasons[:3]) or "Query appears to be seeking general information"

    confidence = max(0.0, min(1.0, confidence))
    logger.info(f"Classified message as {category} (confidence {confidence:.2f})")

    return MessageClassification(
        category=category,
        confidence=round(confidence, 4),
        should_use_journal=category == JOURNAL_SPECIFIC,
        reasoning=reasoning
    )


def assess_complexity(message: str, sub_question_count: int = 0) -> ComplexityAssessment:
    """Score a message as simple, moderate or complex and pick search thresholds"""
    lower = message.lower()
    settings = get_settings()

    is_complex_analysis = bool(COMPLEX_ANALYSIS.search(lower))
    has_multiple_aspects = bool(MULTIPLE_ASPECTS.search(lower))
    indicators = [
        bool(CAUSAL.search(lower)),
        bool(TEMPORAL_PROGRESSION.search(lower)),
        bool(MULTI_FACTOR.search(lower)),
        has_multiple_aspects,
        is_complex_analysis,
    ]
    score = sum(indicators)

    flags = {
        'is_complex_analysis': is_complex_analysis,
        'has_multiple_aspects': has_multiple_aspects,
        'requires_structured_format': bool(STRUCTURED_FORMAT.search(lower)),
        'is_impact_query': bool(IMPACT.search(lower)),
        'has_personal_pronouns': bool(PERSONAL_PRONOUNS.search(lower)),
        'is_multi_question': sub_question_count > 1,
    }

    if score >= 3 or flags['is_multi_question'] or (is_complex_analysis and has_multiple_aspects):
        label = 'complex'
    elif (score >= 2 or flags['has_personal_pronouns'] or flags['is_impact_query']
          or has_multiple_aspects or flags['requires_structured_format']):
        label = 'moderate'
    else:
        label = 'simple'

    return ComplexityAssessment(
        label=label,
        score=score,
        vector_threshold=settings.vector_thresholds[label],
        match_count=settings.match_counts[label],
        search_confidence=settings.search_confidence[label],
        flags=flags
    )


def detect_mental_health_query(message: str) -> bool:
    lower = message.lower()
    has_personal = bool(re.search(r'\b(i|me|my|mine|myself|we|our|us)\b', lower))
    has_terms = any(term in lower for term in MENTAL_HEALTH_TERMS)
    is_help_request = bool(re.search(r'\b(help|advice|suggest|recommend|improve|better)\b', lower))
    is_emotional = bool(re.search(r'\b(feel|feeling|felt|emotion|mood|happy|sad|angry|anxious)\b', lower))

    return (has_personal and (has_terms or is_emotional)) or (is_help_request and (has_terms or is_emotional))


def analyze_query_types(message: str) -> QueryTypes:
    lower = message.lower()
    types = QueryTypes(
        is_emotion_focused=bool(EMOTION_PATTERN.search(lower)),
        is_theme_focused=bool(THEME_PATTERN.search(lower)),
        is_quantitative=bool(QUANTITATIVE_PATTERN.search(lower)),
        is_time_focused=bool(TIME_PATTERN.search(lower)),
        is_why_question=bool(re.search(r'\bwhy\b', lower)),
        is_how_question=bool(re.search(r'\bhow\b(?! many| much)', lower)),
        is_what_question=bool(re.search(r'\bwhat\b', lower)),
        is_comparison=bool(COMPARISON_PATTERN.search(lower)),
        is_person_focused=bool(PERSON_PATTERN.search(lower)),
        is_frequency_focused=bool(FREQUENCY_PATTERN.search(lower)),
    )
    types.needs_data_aggregation = bool(AGGREGATION_PATTERN.search(lower)) or types.is_quantitative
    types.is_entity_focused = bool(ENTITY_PATTERN.search(lower)) or types.is_person_focused
    return types
