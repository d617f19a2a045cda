"""Core business logic.

Modules:
- text_normalizer: answer normalization and token overlap
- grader: quiz grading (MCQ, short answers, AI fallback)
- quiz_generator: LLM quiz generation and validation
- folder_tree: nested folder trees from flat rows
- breadcrumbs: folder path walking
- folder_health: folder integrity metrics
- rate_limiter: sliding-window rate limiting
"""

__all__ = [
    "text_normalizer",
    "grader",
    "quiz_generator",
    "folder_tree",
    "breadcrumbs",
    "folder_health",
    "rate_limiter",
]
