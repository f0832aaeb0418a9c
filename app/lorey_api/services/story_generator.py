"""Turn lesson text into an illustrated, quiz-annotated story."""
from __future__ import annotations

from typing import Any, Dict, Optional

import requests
from flask import current_app

from .openrouter_client import LoreyServiceError, OpenRouterClient, get_openrouter_client
from .story_pattern import reconcile_story


class StoryGenerationError(LoreyServiceError):
    """The story model failed or returned an unusable payload."""


SUMMARY_PROMPT_TEMPLATE = (
    "You are an expert content summarizer. Extract ONLY the essential learning facts from the "
    "following educational content.\n\n"
    "CRITICAL REQUIREMENTS:\n"
    "1. Extract EVERY piece of information that must be learned (dates, names, formulas, concepts, "
    "definitions, theories, events).\n"
    "2. Remove unnecessary words, explanations, examples and filler text.\n"
    "3. Present the information as a concise, numbered list of facts.\n"
    "4. Do NOT skip ANY information - students will be tested on everything.\n\n"
    "Content to summarize:\n{lesson}\n\n"
    "Output ONLY the numbered list of essential facts:"
)

STORY_SYSTEM_PROMPT = (
    "You are both a gifted storyteller and a professor of the neuroscience of learning. "
    "You turn educational content into plot-driven episodes of a chosen fictional universe, "
    "teaching every fact through action, discovery and vivid memory hooks.\n\n"
    "Output Format (JSON):\n"
    "{\n"
    '  "title": "Short catchy title for the educational topic",\n'
    '  "learningOutcomes": ["Key outcome 1", "Key outcome 2", "Key outcome 3"],\n'
    '  "story": [\n'
    "    {\n"
    '      "paragraph": "Story paragraph (6-10 sentences)",\n'
    '      "imagePrompt": "Scene description, or null",\n'
    '      "quiz": {"question": "Question?", "options": ["A", "B", "C", "D", "E"], '
    '"answer": "Exact text of the correct option"}\n'
    "    }\n"
    "  ]\n"
    "}\n\n"
    "RULES:\n"
    "- Output ONLY valid JSON: no markdown, no explanations, no newlines inside strings.\n"
    "- Generate 3-21 paragraphs depending on how much content there is to teach.\n"
    "- EVERY paragraph has a quiz with exactly 5 options; answer must match one option exactly.\n"
    "- imagePrompt is required IF AND ONLY IF (index % 3 == 0): indices 0, 3, 6, 9... "
    "Every other paragraph has imagePrompt null.\n"
    "- Image prompts describe 1-3 characters in full, consistent detail, keep the scene simple, "
    'and end with "high quality, detailed, [art style of universe]".\n'
    "- Do not describe characters' physical appearance inside paragraphs.\n"
    "- Write the story, paragraphs and quizzes in the SAME language as the source content."
)

STORY_USER_PROMPT_TEMPLATE = (
    "You are creating an episode of {universe} that teaches this content:\n\n"
    "{lesson}\n\n"
    "Create a story that feels like an authentic {universe} episode while teaching EVERY piece of "
    "information above. Follow a real plot: opening, inciting incident, rising action, climax and "
    "resolution. Spread the facts across the story instead of dumping them at once, use {universe} "
    "locations, voices and catchphrases, and end each paragraph with a hook.\n\n"
    "Return only the JSON object described in the instructions."
)


def summarize_lesson(lesson_text: str, client: Optional[OpenRouterClient] = None) -> str:
    """Condense a lesson into a fact list, falling back to the original text."""
    client = client or get_openrouter_client()
    try:
        summary = client.generate_text(
            SUMMARY_PROMPT_TEMPLATE.format(lesson=lesson_text),
            model=client.summary_model,
            temperature=0.3,
            max_tokens=4000,
            title="Lorey - Content Summarizer",
        )
    except requests.exceptions.RequestException as exc:
        current_app.logger.warning("Summarization failed, using original text: %s", exc)
        return lesson_text

    if not summary:
        current_app.logger.warning("Summarization returned nothing, using original text")
        return lesson_text

    reduction = round((1 - len(summary) / max(len(lesson_text), 1)) * 100)
    current_app.logger.info(
        "Summarization complete: %s -> %s chars (%s%% reduction)",
        len(lesson_text),
        len(summary),
        reduction,
    )
    return summary


def generate_story(
    lesson_text: str,
    universe: str,
    client: Optional[OpenRouterClient] = None,
) -> Dict[str, Any]:
    """Generate a story for a lesson and reconcile its paragraph pattern.

    Args:
        lesson_text: Raw lesson text supplied by the user
        universe: Fictional universe the story is set in
        client: Optional OpenRouterClient instance (will create one if not provided)

    Returns:
        Dictionary with title, learningOutcomes, story and the reconciliation summaries

    Raises:
        StoryGenerationError: when the model call fails or the payload has no story list
    """
    client = client or get_openrouter_client()
    if not client.is_configured:
        raise StoryGenerationError("OpenRouter API key not configured")

    facts = summarize_lesson(lesson_text, client)

    try:
        payload = client.generate_json(
            STORY_USER_PROMPT_TEMPLATE.format(universe=universe, lesson=facts),
            system_instruction=STORY_SYSTEM_PROMPT,
            model=client.story_model,
            temperature=0.8,
            max_tokens=16000,
            title="Lorey - Educational Story Generator",
        )
    except requests.exceptions.RequestException as exc:
        current_app.logger.error("Story generation request failed for universe %s: %s", universe, exc)
        raise StoryGenerationError(f"Story model request failed: {exc}") from exc

    if not isinstance(payload, dict) or not isinstance(payload.get("story"), list):
        current_app.logger.error("Story generation failed for universe %s - invalid response format", universe)
        raise StoryGenerationError("Invalid JSON response from story model")

    story = payload["story"]
    image_summary, quiz_summary = reconcile_story(story, universe)
    current_app.logger.info("Image pattern enforcement result: %s", image_summary.to_dict())
    current_app.logger.info("Quiz pattern enforcement result: %s", quiz_summary.to_dict())

    title = payload.get("title")
    outcomes = payload.get("learningOutcomes")
    return {
        "title": title.strip() if isinstance(title, str) and title.strip() else "Untitled Story",
        "learningOutcomes": outcomes if isinstance(outcomes, list) else [],
        "story": story,
        "reconciliation": {
            "images": image_summary.to_dict(),
            "quizzes": quiz_summary.to_dict(),
        },
    }
