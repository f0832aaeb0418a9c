"""Standalone quiz questions about a single concept."""
from __future__ import annotations

from typing import Dict, Optional

from flask import current_app

from .openrouter_client import OpenRouterClient, get_openrouter_client
from .story_pattern import QUIZ_FIXED, repair_quiz


def generate_quiz(
    concept: str,
    universe: Optional[str] = None,
    client: Optional[OpenRouterClient] = None,
) -> Optional[Dict]:
    """Generate one five-option question about ``concept``.

    Returns:
        Dictionary with question, options and answer, or None on failure
    """
    client = client or get_openrouter_client()

    if not client.is_configured:
        current_app.logger.error("OpenRouter API not configured - cannot generate quiz")
        return None

    prompt = (
        f'Generate a new challenging multiple-choice quiz question about this concept: "{concept}"\n\n'
        f"Universe context: {universe or 'general'}\n\n"
        "Requirements:\n"
        "- 5 options (A, B, C, D, E)\n"
        "- Test deep understanding, not just memorization\n"
        "- Make it relevant and engaging\n"
        "- Clearly indicate the correct answer\n\n"
        "Output as JSON:\n"
        '{"question": "Question text?", "options": ["Option A", "Option B", "Option C", "Option D", '
        '"Option E"], "answer": "Correct option text"}'
    )

    payload = client.generate_json(
        prompt,
        model=client.story_model,
        temperature=0.9,
        max_tokens=1000,
        title="Lorey - Quiz Generator",
    )
    if not isinstance(payload, dict):
        current_app.logger.error("Quiz generation failed for concept %r - invalid response format", concept)
        return None

    quiz, status = repair_quiz(payload)
    if status == QUIZ_FIXED:
        current_app.logger.warning("Repaired malformed quiz for concept %r", concept)
    return quiz
