import copy
import random

import pytest
from flask import Flask

from app.lorey_api.services.story_pattern import (
    DEFAULT_QUIZ_QUESTION,
    PLACEHOLDER_OPTIONS,
    QUIZ_ADDED,
    QUIZ_FIXED,
    QUIZ_VALID,
    enforce_image_prompt_pattern,
    enforce_quiz_pattern,
    is_valid_quiz,
    reconcile_story,
    repair_quiz,
)


@pytest.fixture(autouse=True)
def app_context():
    app = Flask(__name__)
    with app.app_context():
        yield


def _quiz(answer="B"):
    return {"question": "Which one?", "options": ["A", "B", "C", "D", "E"], "answer": answer}


def _story(length, prompt_indices=(), quizzes=False):
    story = []
    for idx in range(length):
        unit = {"paragraph": f"Paragraph {idx}", "imagePrompt": None}
        if idx in prompt_indices:
            unit["imagePrompt"] = f"prompt-{idx}"
        if quizzes:
            unit["quiz"] = _quiz()
        story.append(unit)
    return story


def _assert_invariants(story):
    for idx, unit in enumerate(story):
        if idx % 3 == 0:
            assert isinstance(unit["imagePrompt"], str) and unit["imagePrompt"].strip()
        else:
            assert unit["imagePrompt"] is None
        assert is_valid_quiz(unit["quiz"])


def test_empty_story_is_a_no_op():
    story = []

    images, quizzes = reconcile_story(story, "Star Wars")

    assert story == []
    assert images.to_dict() == {
        "expectedIndices": [],
        "assignedFromOriginal": 0,
        "reassigned": 0,
        "generatedFallbacks": 0,
        "discardedExtraPrompts": 0,
    }
    assert quizzes.to_dict() == {
        "totalParagraphs": 0,
        "quizzesFound": 0,
        "quizzesAdded": 0,
        "quizzesFixed": 0,
    }


def test_single_paragraph_expects_index_zero():
    story = _story(1)

    summary = enforce_image_prompt_pattern(story, "Marvel")

    assert summary.expected_indices == [0]
    assert summary.generated_fallbacks == 1
    assert "Marvel" in story[0]["imagePrompt"]


def test_stray_prompt_is_discarded_when_slots_are_already_matched():
    story = _story(4, prompt_indices=(0, 1, 3))

    summary = enforce_image_prompt_pattern(story, "Rick and Morty")

    assert summary.expected_indices == [0, 3]
    assert summary.assigned_from_original == 2
    assert summary.reassigned == 0
    assert summary.generated_fallbacks == 0
    assert summary.discarded_extra_prompts == 1
    assert story[0]["imagePrompt"] == "prompt-0"
    assert story[1]["imagePrompt"] is None
    assert story[3]["imagePrompt"] == "prompt-3"


def test_missing_prompts_are_synthesized_from_paragraph_text():
    story = _story(6)

    summary = enforce_image_prompt_pattern(story, "Harry Potter")

    assert summary.expected_indices == [0, 3]
    assert summary.generated_fallbacks == 2
    assert story[0]["imagePrompt"] == (
        "Create a cinematic illustration for paragraph 1 from Harry Potter: Paragraph 0 "
        "High quality, detailed, 2:3 aspect ratio."
    )
    assert "paragraph 4 from Harry Potter: Paragraph 3" in story[3]["imagePrompt"]
    assert all(story[idx]["imagePrompt"] is None for idx in (1, 2, 4, 5))


def test_aligned_prompts_are_kept_in_place():
    story = _story(9, prompt_indices=(0, 3, 6))

    summary = enforce_image_prompt_pattern(story, "DC")

    assert summary.assigned_from_original == 3
    assert summary.reassigned == 0
    assert summary.generated_fallbacks == 0
    assert summary.discarded_extra_prompts == 0
    assert [story[idx]["imagePrompt"] for idx in (0, 3, 6)] == ["prompt-0", "prompt-3", "prompt-6"]


def test_misplaced_prompts_move_to_slots_in_harvest_order():
    story = _story(7, prompt_indices=(1, 2, 4))

    summary = enforce_image_prompt_pattern(story, "SpongeBob")

    assert summary.reassigned == 3
    assert summary.generated_fallbacks == 0
    assert [story[idx]["imagePrompt"] for idx in (0, 3, 6)] == ["prompt-1", "prompt-2", "prompt-4"]


def test_earlier_slot_takes_pool_head_even_if_it_belongs_to_a_later_slot():
    story = _story(4, prompt_indices=(3, 4))

    summary = enforce_image_prompt_pattern(story)

    assert summary.assigned_from_original == 0
    assert summary.reassigned == 2
    assert story[0]["imagePrompt"] == "prompt-3"
    assert story[3]["imagePrompt"] == "prompt-4"


def test_fallback_prompt_truncates_long_paragraphs():
    story = [{"paragraph": "x" * 400, "imagePrompt": None}]

    enforce_image_prompt_pattern(story, None)

    prompt = story[0]["imagePrompt"]
    assert "x" * 300 + "..." in prompt
    assert "x" * 301 not in prompt
    assert "from this story:" in prompt


def test_fallback_prompt_without_paragraph_text():
    story = [{"imagePrompt": ""}]

    enforce_image_prompt_pattern(story, "Regular Show")

    assert story[0]["imagePrompt"] == (
        "Create a cinematic illustration for paragraph 1 from Regular Show. "
        "High quality, detailed, 2:3 aspect ratio."
    )


def test_blank_and_non_string_prompts_count_as_missing():
    story = _story(4)
    story[0]["imagePrompt"] = "   "
    story[3]["imagePrompt"] = {"scene": "castle"}

    summary = enforce_image_prompt_pattern(story, "Star Wars")

    assert summary.generated_fallbacks == 2
    assert summary.discarded_extra_prompts == 0


def test_non_dict_units_are_replaced_without_changing_length():
    story = [None, "a bare paragraph", 42, {"paragraph": "ok"}]

    reconcile_story(story, "Adventure Time")

    assert len(story) == 4
    assert story[1]["paragraph"] == "a bare paragraph"
    assert story[2]["paragraph"] == ""
    _assert_invariants(story)


def test_paragraph_text_is_never_modified():
    story = _story(5, prompt_indices=(2,))
    originals = [unit["paragraph"] for unit in story]

    reconcile_story(story, "Marvel")

    assert [unit["paragraph"] for unit in story] == originals


def test_image_pass_is_idempotent():
    story = _story(10, prompt_indices=(1, 5, 9))
    enforce_image_prompt_pattern(story, "Star Wars")
    once = copy.deepcopy(story)

    second = enforce_image_prompt_pattern(story, "Star Wars")

    assert story == once
    assert second.assigned_from_original == len(second.expected_indices)
    assert second.reassigned == 0
    assert second.generated_fallbacks == 0
    assert second.discarded_extra_prompts == 0


def test_no_fallbacks_when_enough_prompts_exist():
    story = _story(9, prompt_indices=(1, 2, 4, 5))

    summary = enforce_image_prompt_pattern(story)

    assert summary.generated_fallbacks == 0
    assert summary.discarded_extra_prompts == 1


def test_randomized_inputs_always_satisfy_invariants_and_conserve_prompts():
    rng = random.Random(1234)
    quiz_shapes = [
        None,
        "not a quiz",
        {},
        _quiz(),
        _quiz(answer="Z"),
        {"question": "", "options": ["A", "B", "C"], "answer": "A"},
        {"question": "Q?", "options": ["A", "B", "C", "D", "E", "F"], "answer": "F"},
        {"question": "Q?", "options": [1, 2, 3, 4, 5], "answer": 1},
        {"question": "Q?", "options": ["", "B", "C", "D", "E"], "answer": "Z"},
        {"question": "Q?", "options": ["", "", "", "", ""], "answer": ""},
    ]
    prompt_shapes = [None, None, "", "  ", "a castle at dusk", "a ship in a storm", 7]

    for _ in range(200):
        length = rng.randint(0, 25)
        story = []
        for idx in range(length):
            unit = {"paragraph": f"p{idx}"}
            if rng.random() < 0.8:
                unit["imagePrompt"] = rng.choice(prompt_shapes)
            if rng.random() < 0.8:
                unit["quiz"] = copy.deepcopy(rng.choice(quiz_shapes))
            story.append(unit)
        present = sum(
            1 for unit in story
            if isinstance(unit.get("imagePrompt"), str) and unit["imagePrompt"].strip()
        )

        images, quizzes = reconcile_story(story, "Marvel")

        assert len(story) == length
        _assert_invariants(story)
        assert images.assigned_from_original + images.reassigned + images.discarded_extra_prompts == present
        if present >= len(images.expected_indices):
            assert images.generated_fallbacks == 0
        assert quizzes.quizzes_found + quizzes.quizzes_added == length


def test_quiz_pass_adds_and_fixes_per_paragraph():
    story = _story(3)
    story[1]["quiz"] = {"question": "Which year?", "options": ["1453", "1492", "1066"], "answer": "1071"}

    summary = enforce_quiz_pattern(story)

    assert summary.to_dict() == {
        "totalParagraphs": 3,
        "quizzesFound": 1,
        "quizzesAdded": 2,
        "quizzesFixed": 1,
    }
    assert story[1]["quiz"] == {
        "question": "Which year?",
        "options": PLACEHOLDER_OPTIONS,
        "answer": "Option A",
    }
    assert story[0]["quiz"]["question"] == DEFAULT_QUIZ_QUESTION
    assert story[2]["quiz"]["answer"] == "Option A"


def test_valid_quizzes_are_left_untouched():
    story = _story(4, quizzes=True)
    before = copy.deepcopy(story)

    summary = enforce_quiz_pattern(story)

    assert summary.quizzes_found == 4
    assert summary.quizzes_added == 0
    assert summary.quizzes_fixed == 0
    assert story == before


def test_repair_quiz_keeps_valid_fields_and_extra_keys():
    quiz = {
        "question": "",
        "options": ["Red", "Green", "Blue", "Cyan", "Magenta"],
        "answer": "Purple",
        "explanation": "Colours of light",
    }

    repaired, status = repair_quiz(quiz)

    assert status == QUIZ_FIXED
    assert repaired["question"] == DEFAULT_QUIZ_QUESTION
    assert repaired["options"] == ["Red", "Green", "Blue", "Cyan", "Magenta"]
    assert repaired["answer"] == "Red"
    assert repaired["explanation"] == "Colours of light"


def test_repair_quiz_skips_blank_options_when_choosing_answer():
    story = [{"paragraph": "p", "quiz": {"question": "Q?", "options": ["", "B", "C", "D", "E"], "answer": "Z"}}]

    first = enforce_quiz_pattern(story)
    second = enforce_quiz_pattern(story)

    assert story[0]["quiz"]["options"] == ["", "B", "C", "D", "E"]
    assert story[0]["quiz"]["answer"] == "B"
    assert is_valid_quiz(story[0]["quiz"])
    assert first.quizzes_fixed == 1
    assert second.quizzes_fixed == 0


def test_repair_quiz_replaces_all_blank_options():
    repaired, status = repair_quiz({"question": "Q?", "options": ["", "", "", "", ""], "answer": ""})

    assert status == QUIZ_FIXED
    assert repaired["options"] == PLACEHOLDER_OPTIONS
    assert repaired["answer"] == "Option A"


def test_repair_quiz_statuses():
    assert repair_quiz(_quiz())[1] == QUIZ_VALID
    assert repair_quiz(None) == (
        {"question": DEFAULT_QUIZ_QUESTION, "options": PLACEHOLDER_OPTIONS, "answer": "Option A"},
        QUIZ_ADDED,
    )
    assert repair_quiz(["not", "a", "dict"])[1] == QUIZ_ADDED


def test_passes_commute():
    first = _story(7, prompt_indices=(2, 3))
    first[4]["quiz"] = _quiz(answer="nope")
    second = copy.deepcopy(first)

    enforce_image_prompt_pattern(first, "DC")
    enforce_quiz_pattern(first)
    enforce_quiz_pattern(second)
    enforce_image_prompt_pattern(second, "DC")

    assert first == second
