"""Repair generated story payloads so every paragraph fits the expected shape.

The story model is told to put an image prompt on every third paragraph
(indices 0, 3, 6, ...) and a quiz on every paragraph, but it does not always
comply. The two passes below rewrite the ``story`` list in place until both
rules hold. They touch disjoint keys (``imagePrompt`` and ``quiz``), so they
can run in either order.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app

IMAGE_INTERVAL = 3
QUIZ_OPTION_COUNT = 5
FALLBACK_TEXT_LIMIT = 300
DEFAULT_UNIVERSE_LABEL = "this story"

DEFAULT_QUIZ_QUESTION = "What is the main concept or key point discussed in this paragraph?"
PLACEHOLDER_OPTIONS = ["Option A", "Option B", "Option C", "Option D", "Option E"]

QUIZ_VALID = "valid"
QUIZ_ADDED = "added"
QUIZ_FIXED = "fixed"


@dataclass
class ImagePromptSummary:
    """Outcome of one image-prompt pass."""
    expected_indices: List[int] = field(default_factory=list)
    assigned_from_original: int = 0
    reassigned: int = 0
    generated_fallbacks: int = 0
    discarded_extra_prompts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expectedIndices": list(self.expected_indices),
            "assignedFromOriginal": self.assigned_from_original,
            "reassigned": self.reassigned,
            "generatedFallbacks": self.generated_fallbacks,
            "discardedExtraPrompts": self.discarded_extra_prompts,
        }


@dataclass
class QuizPatternSummary:
    """Outcome of one quiz pass."""
    total_paragraphs: int = 0
    quizzes_found: int = 0
    quizzes_added: int = 0
    quizzes_fixed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalParagraphs": self.total_paragraphs,
            "quizzesFound": self.quizzes_found,
            "quizzesAdded": self.quizzes_added,
            "quizzesFixed": self.quizzes_fixed,
        }


def _ensure_units(story: List[Any]) -> None:
    """Replace non-dict entries in place so every index can carry fields."""
    for idx, unit in enumerate(story):
        if not isinstance(unit, dict):
            story[idx] = {"paragraph": unit if isinstance(unit, str) else ""}


def _has_prompt(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def expected_image_indices(length: int) -> List[int]:
    """Indices that must carry an image prompt for a story of ``length`` units."""
    return list(range(0, max(length, 0), IMAGE_INTERVAL))


def build_fallback_image_prompt(unit: Dict[str, Any], index: int, universe: Optional[str]) -> str:
    """Describe a generic illustration for a paragraph the model left without one."""
    text = unit.get("paragraph")
    text = text if isinstance(text, str) else ""
    if len(text) > FALLBACK_TEXT_LIMIT:
        text = f"{text[:FALLBACK_TEXT_LIMIT]}..."
    label = universe or DEFAULT_UNIVERSE_LABEL
    if text:
        return (
            f"Create a cinematic illustration for paragraph {index + 1} from {label}: {text} "
            "High quality, detailed, 2:3 aspect ratio."
        )
    return (
        f"Create a cinematic illustration for paragraph {index + 1} from {label}. "
        "High quality, detailed, 2:3 aspect ratio."
    )


def enforce_image_prompt_pattern(story: List[Any], universe: Optional[str] = None) -> ImagePromptSummary:
    """Place exactly one image prompt on every third paragraph.

    All prompts are harvested into a pool first and cleared from their units.
    Each expected slot then takes, in order of preference, the prompt that was
    already on that index, the oldest remaining pooled prompt, or a prompt
    synthesized from the paragraph text. Pooled prompts left over at the end
    are dropped and counted.
    """
    if not isinstance(story, list) or not story:
        return ImagePromptSummary()

    _ensure_units(story)
    summary = ImagePromptSummary(expected_indices=expected_image_indices(len(story)))

    pool = deque()
    for idx, unit in enumerate(story):
        prompt = unit.get("imagePrompt")
        if _has_prompt(prompt):
            pool.append((prompt, idx))
        unit["imagePrompt"] = None

    for idx in summary.expected_indices:
        unit = story[idx]

        same_index = next((entry for entry in pool if entry[1] == idx), None)
        if same_index is not None:
            pool.remove(same_index)
            unit["imagePrompt"] = same_index[0]
            summary.assigned_from_original += 1
            continue

        if pool:
            prompt, _ = pool.popleft()
            unit["imagePrompt"] = prompt
            summary.reassigned += 1
            continue

        unit["imagePrompt"] = build_fallback_image_prompt(unit, idx, universe)
        summary.generated_fallbacks += 1

    summary.discarded_extra_prompts = len(pool)
    pool.clear()

    if summary.reassigned or summary.generated_fallbacks or summary.discarded_extra_prompts:
        current_app.logger.warning(
            "Image prompt pattern repaired: reassigned=%s fallbacks=%s discarded=%s",
            summary.reassigned,
            summary.generated_fallbacks,
            summary.discarded_extra_prompts,
        )
    return summary


def _valid_options(options: Any) -> bool:
    return (
        isinstance(options, list)
        and len(options) == QUIZ_OPTION_COUNT
        and all(isinstance(option, str) for option in options)
    )


def is_valid_quiz(quiz: Any) -> bool:
    """True when a quiz has a question, five string options and an answer among them."""
    if not isinstance(quiz, dict):
        return False
    question = quiz.get("question")
    options = quiz.get("options")
    answer = quiz.get("answer")
    return (
        isinstance(question, str)
        and bool(question.strip())
        and _valid_options(options)
        and isinstance(answer, str)
        and bool(answer)
        and answer in options
    )


def default_quiz() -> Dict[str, Any]:
    return {
        "question": DEFAULT_QUIZ_QUESTION,
        "options": list(PLACEHOLDER_OPTIONS),
        "answer": PLACEHOLDER_OPTIONS[0],
    }


def repair_quiz(quiz: Any) -> Tuple[Dict[str, Any], str]:
    """Return a well-formed quiz and whether it was kept, added or fixed.

    Broken fields are replaced one at a time; valid fields and any extra keys
    on the quiz dict are kept.
    """
    if not isinstance(quiz, dict):
        return default_quiz(), QUIZ_ADDED
    if is_valid_quiz(quiz):
        return quiz, QUIZ_VALID

    question = quiz.get("question")
    if not (isinstance(question, str) and question.strip()):
        quiz["question"] = DEFAULT_QUIZ_QUESTION

    options = quiz.get("options")
    if not _valid_options(options) or not any(options):
        quiz["options"] = list(PLACEHOLDER_OPTIONS)

    answer = quiz.get("answer")
    if not (isinstance(answer, str) and answer and answer in quiz["options"]):
        # Blank options cannot serve as the answer
        quiz["answer"] = next(option for option in quiz["options"] if option)

    return quiz, QUIZ_FIXED


def enforce_quiz_pattern(story: List[Any]) -> QuizPatternSummary:
    """Make sure every paragraph carries a well-formed five-option quiz."""
    if not isinstance(story, list) or not story:
        return QuizPatternSummary()

    _ensure_units(story)
    summary = QuizPatternSummary(total_paragraphs=len(story))

    for idx, unit in enumerate(story):
        quiz, status = repair_quiz(unit.get("quiz"))
        unit["quiz"] = quiz
        if status == QUIZ_ADDED:
            summary.quizzes_added += 1
            current_app.logger.warning("Missing quiz at paragraph %s; added fallback quiz", idx)
            continue
        summary.quizzes_found += 1
        if status == QUIZ_FIXED:
            summary.quizzes_fixed += 1
            current_app.logger.warning("Fixed invalid quiz at paragraph %s", idx)

    if summary.quizzes_added or summary.quizzes_fixed:
        current_app.logger.info(
            "Quiz enforcement: found=%s added=%s fixed=%s",
            summary.quizzes_found,
            summary.quizzes_added,
            summary.quizzes_fixed,
        )
    return summary


def reconcile_story(
    story: List[Any], universe: Optional[str] = None
) -> Tuple[ImagePromptSummary, QuizPatternSummary]:
    """Run both passes over one generated story."""
    return enforce_image_prompt_pattern(story, universe), enforce_quiz_pattern(story)
