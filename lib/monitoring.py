import logging
import math
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

LOW_SCORE_THRESHOLD = 0.3


class SearchDiagnostics:
    """Collects counters for one pass through the search pipeline"""

    def __init__(self):
        self.query = {
            'original_query': '',
            'embedding_length': 0,
            'has_valid_embedding': False,
        }
        self.vector = {
            'results_count': 0,
            'has_results': False,
            'similarity_scores': [],
            'top_score': None,
        }
        self.sql = {
            'results_count': 0,
            'has_results': False,
            'strategy': '',
        }
        self.combined = {
            'total_results': 0,
            'deduplicated_results': 0,
            'final_strategy': '',
        }

    def log_query_processing(self, query: str, embedding: List[float]) -> None:
        valid = bool(embedding) and all(
            isinstance(value, (int, float)) and not math.isnan(value) for value in embedding
        )
        self.query = {
            'original_query': query,
            'embedding_length': len(embedding),
            'has_valid_embedding': valid,
        }
        logger.info(
            f"Query processing: '{query[:100]}' embedding_length={len(embedding)} valid={valid}"
        )

    def log_vector_results(self, results: List[Dict[str, Any]]) -> None:
        scores = sorted(
            (r.get('similarity') for r in results
             if isinstance(r.get('similarity'), (int, float))),
            reverse=True
        )
        self.vector = {
            'results_count': len(results),
            'has_results': bool(results),
            'similarity_scores': scores,
            'top_score': scores[0] if scores else None,
        }
        logger.info(
            f"Vector search: {len(results)} results, top score {self.vector['top_score']}, "
            f"buckets {self.score_buckets(scores)}"
        )

        if not results:
            logger.warning("Vector search returned 0 results; check embeddings and the similarity threshold")
        elif self.vector['top_score'] is not None and self.vector['top_score'] < LOW_SCORE_THRESHOLD:
            logger.warning("Low similarity scores; query may be far from existing entries")

    def log_sql_results(self, results: List[Dict[str, Any]], strategy: str) -> None:
        self.sql = {
            'results_count': len(results),
            'has_results': bool(results),
            'strategy': strategy,
        }
        logger.info(f"SQL search ({strategy}): {len(results)} results")

    def log_combined(self, total: int, deduplicated: int, final_strategy: str) -> None:
        self.combined = {
            'total_results': total,
            'deduplicated_results': deduplicated,
            'final_strategy': final_strategy,
        }
        logger.info(
            f"Combined search: {total} total, {deduplicated} unique, "
            f"strategy {final_strategy}, dedup {self.dedup_effectiveness()}"
        )

    @staticmethod
    def score_buckets(scores: List[float]) -> Dict[str, int]:
        return {
            'high': len([s for s in scores if s >= 0.8]),
            'medium': len([s for s in scores if 0.5 <= s < 0.8]),
            'low': len([s for s in scores if s < 0.5]),
        }

    def dedup_effectiveness(self) -> str:
        total = self.combined['total_results']
        if not total:
            return '0%'
        removed = total - self.combined['deduplicated_results']
        return f"{removed / total * 100:.1f}%"

    def summary(self) -> Dict[str, Any]:
        top_score = self.vector['top_score']
        health = {
            'query_ok': self.query['has_valid_embedding'],
            'vector_ok': self.vector['has_results'] and top_score is not None and top_score > LOW_SCORE_THRESHOLD,
            'sql_ok': self.sql['has_results'],
            'pipeline_ok': self.combined['deduplicated_results'] > 0,
        }

        recommendations = []
        if not health['pipeline_ok']:
            if not health['query_ok']:
                recommendations.append('Fix embedding generation (check OpenAI API key and connectivity)')
            if not self.vector['has_results']:
                recommendations.append('Check that the user has journal entries with embeddings')
                recommendations.append('Consider lowering the similarity threshold')
            if not health['sql_ok']:
                recommendations.append('Verify the SQL search strategy fits the query type')

        return {
            'health': health,
            'recommendations': recommendations,
            'vector': {
                'results_count': self.vector['results_count'],
                'top_score': top_score,
                'buckets': self.score_buckets(self.vector['similarity_scores']),
            },
            'sql': dict(self.sql),
            'combined': dict(self.combined, dedup_effectiveness=self.dedup_effectiveness()),
        }
