"""
Tests for prompt response parsing.

Covers:
1. Each extraction strategy (headers, inline headers, numbered, whole text, paragraphs)
2. Deduplication and the 100-character threshold
3. Synthetic padding, determinism and the shortfall signal
4. Markup stripping
"""

import pytest

from common.services.prompt_parser import (
    MIN_PROMPT_LENGTH,
    PROMPT_VARIATIONS,
    create_prompt_variation,
    extract_numbered_prompts,
    extract_structured_prompts,
    normalize_prompt,
    parse_multiple_prompts,
    parse_prompts,
    strip_markup,
)


def _paragraph(label: str) -> str:
    return (
        f"Dress the person in the uploaded {label} outfit while keeping face and body unchanged, "
        f"then move them into a softly lit {label} setting with layered depth and gentle rim light."
    )


@pytest.fixture
def three_paragraphs():
    return [_paragraph("rooftop"), _paragraph("forest"), _paragraph("gallery")]


# =============================================================================
# Extraction strategies
# =============================================================================


def test_markdown_headers_return_exact_count(three_paragraphs):
    p1, p2, p3 = three_paragraphs
    text = f"### Prompt 1:\n{p1}\n\n### Prompt 2:\n{p2}\n\n### Prompt 3:\n{p3}\n"

    assert parse_multiple_prompts(text, 3) == [p1, p2, p3]


def test_bold_headers_and_emphasis_are_stripped(three_paragraphs):
    p1, p2, _ = three_paragraphs
    text = f"**Prompt 1:** {p1.replace('uploaded', '**uploaded**')}\n**Prompt 2:** *{p2}*\n"

    prompts = parse_multiple_prompts(text, 2)

    assert prompts == [p1, p2]
    assert all("*" not in p for p in prompts)


def test_preamble_before_first_header_is_ignored(three_paragraphs):
    p1, p2, _ = three_paragraphs
    preamble = "Sure! Here are two creative directions for your fashion editorial shoot, tailored to the photo you shared."
    text = f"{preamble}\n\nImage 1: {p1}\n\nImage 2: {p2}"

    assert parse_multiple_prompts(text, 2) == [p1, p2]


def test_inline_headers_use_header_split(three_paragraphs):
    p1, p2, _ = three_paragraphs
    text = f"Here you go. Prompt 1: {p1} Prompt 2: {p2}"

    assert extract_structured_prompts(text) == []
    assert parse_multiple_prompts(text, 2) == [p1, p2]


def test_numbered_list_split(three_paragraphs):
    p1, p2, p3 = three_paragraphs
    text = f"Here are your prompts\n1. {p1}\n2. {p2}\n3. {p3}\n"

    assert parse_multiple_prompts(text, 3) == [f"1. {p1}", f"2. {p2}", f"3. {p3}"]


def test_numbered_split_only_at_line_start():
    text = "Use version 2. The rest stays.\n1. first\n2. second"

    assert extract_numbered_prompts(text) == ["1. first\n", "2. second"]


def test_truncates_to_first_prompts_in_document_order():
    labels = ["alpine", "harbor", "desert", "studio", "garden", "subway", "library", "beach", "loft", "canyon"]
    text = "\n".join(f"{i}. {_paragraph(label)}" for i, label in enumerate(labels, start=1))

    prompts = parse_multiple_prompts(text, 2)

    assert prompts == [f"1. {_paragraph('alpine')}", f"2. {_paragraph('harbor')}"]


def test_whole_text_is_used_for_single_unstructured_prompt():
    text = _paragraph("meadow") + " Finish with warm color grading."

    assert parse_multiple_prompts(text, 1) == [text]


def test_whole_text_precedes_paragraph_split(three_paragraphs):
    p1, p2, p3 = three_paragraphs
    text = f"{p1}\n\n{p2}\n\n{p3}"

    prompts = parse_multiple_prompts(text, 3)

    assert prompts == [text, p1, p2]


def test_short_fragments_are_skipped(three_paragraphs):
    p1, p2, _ = three_paragraphs
    text = f"Great photo!\n\n{p1}\n\nEnjoy.\n\n{p2}"

    prompts = parse_multiple_prompts(text, 3)

    assert "Great photo!" not in prompts
    assert "Enjoy." not in prompts
    assert p1 in prompts and p2 in prompts


# =============================================================================
# Threshold and deduplication
# =============================================================================


def test_threshold_is_strictly_greater_than_100():
    exactly = "x" * MIN_PROMPT_LENGTH
    above = "x" * (MIN_PROMPT_LENGTH + 1)

    assert parse_multiple_prompts(exactly, 1) == [create_prompt_variation(exactly, 1)]
    assert parse_multiple_prompts(above, 1) == [above]


def test_duplicate_blocks_are_discarded_and_padded():
    body = _paragraph("marble hall")
    spaced = "  " + body.replace(" ", "   ") + "\n"
    text = f"Prompt 1: {body}\n\nPrompt 2: {spaced}"

    result = parse_prompts(text, 2)

    assert result.prompts == [body, create_prompt_variation(body, 2)]
    assert result.synthesized_count == 1
    assert result.is_complete


def test_results_are_distinct_under_normalization(three_paragraphs):
    text = "\n\n".join(f"Prompt {i}: {p}" for i, p in enumerate(three_paragraphs * 2, start=1))

    prompts = parse_multiple_prompts(text, 5)

    keys = [normalize_prompt(p) for p in prompts]
    assert len(prompts) == 5
    assert len(set(keys)) == 5


# =============================================================================
# Padding and shortfall
# =============================================================================


def test_empty_text_is_padded_with_distinct_variations():
    prompts = parse_multiple_prompts("", 3)

    assert prompts == [create_prompt_variation("", i) for i in (1, 2, 3)]
    assert len(set(prompts)) == 3
    assert all(len(p) > MIN_PROMPT_LENGTH for p in prompts)


def test_padding_is_deterministic():
    assert parse_multiple_prompts("", 4) == parse_multiple_prompts("", 4)
    assert parse_multiple_prompts(None, 2) == parse_multiple_prompts("", 2)


def test_padding_keeps_real_prompts_first(three_paragraphs):
    p1 = three_paragraphs[0]

    prompts = parse_multiple_prompts(f"Prompt 1: {p1}", 3)

    assert prompts[0] == p1
    assert prompts[1:] == [create_prompt_variation(p1, 2), create_prompt_variation(p1, 3)]


def test_pool_collision_reports_shortfall():
    text = create_prompt_variation("", 2)

    result = parse_prompts(text, 3)

    assert result.prompts == [text]
    assert result.shortfall == 2
    assert result.synthesized_count == 0
    assert not result.is_complete


def test_count_below_one_is_treated_as_one():
    result = parse_prompts("", 0)

    assert result.expected_count == 1
    assert len(result.prompts) == 1


# =============================================================================
# Variation synthesizer and markup
# =============================================================================


def test_variation_depends_only_on_index():
    assert create_prompt_variation("anything", 3) == create_prompt_variation("else", 3)
    assert create_prompt_variation("", 1) != create_prompt_variation("", 2)


def test_variation_cycles_pool_and_embeds_index():
    size = len(PROMPT_VARIATIONS)

    first = create_prompt_variation("", 1)
    wrapped = create_prompt_variation("", 1 + size)

    assert first.startswith("CREATIVE MASTERPIECE 1:")
    assert wrapped.startswith(f"CREATIVE MASTERPIECE {1 + size}:")


@pytest.mark.parametrize(
    "text",
    [
        "### Prompt 1: **Bold** and *italic* text",
        "***nested emphasis*** stays readable",
        "Prompt Prompt 1: 1: doubled header",
        "**Image 2:** plain",
        "no markup at all",
        "* bullet one\n* bullet two",
    ],
)
def test_strip_markup_is_idempotent(text):
    once = strip_markup(text)

    assert strip_markup(once) == once


def test_strip_markup_removes_leading_header_only():
    assert strip_markup("## Prompt 3: Keep the **pose** natural") == "Keep the pose natural"
    assert strip_markup("Prompt for AI Image Editing: relight") == "relight"


def test_normalize_prompt_collapses_whitespace():
    assert normalize_prompt("  Hello \n\t World  ") == "hello world"
