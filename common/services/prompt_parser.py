"""
Prompt response parsing.

Splits a free-text LLM response into a fixed number of distinct, substantial
image-editing prompts. Extraction runs an ordered list of strategies against
one shared collector; when real extraction under-produces, generic variations
are synthesized to pad the result.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set

logger = logging.getLogger(__name__)

MIN_PROMPT_LENGTH = 100

_HEADING = (
    r"(?:\bPrompt[ \t]+for[ \t]+AI[ \t]+Image[ \t]+Editing[ \t]*:?"
    r"|\b(?:Prompt|Image)[ \t]*\d*[ \t]*\*{0,2}[ \t]*:)"
)
_MARKER = r"(?:#{1,6}[ \t]*)?\*{0,2}[ \t]*" + _HEADING + r"[ \t]*\*{0,2}"

# Headings that open a line, e.g. "### Prompt 1:" or "**Image 2:**"
LINE_HEADER_RE = re.compile(r"^[ \t]*" + _MARKER, re.IGNORECASE | re.MULTILINE)
# Same markers anywhere in the text
HEADER_RE = re.compile(_MARKER, re.IGNORECASE)
LEADING_HEADER_RE = re.compile(r"^\s*" + _MARKER, re.IGNORECASE)
NUMBERED_SPLIT_RE = re.compile(r"^(?=[ \t]*\d+\.\s)", re.MULTILINE)
PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
BOLD_RE = re.compile(r"\*\*(.*?)\*\*")
ITALIC_RE = re.compile(r"\*(.*?)\*")

PROMPT_VARIATIONS = (
    "ARTISTIC VARIATION {index}: Replace the person's current clothing with the uploaded clothing items, "
    "maintaining their face and body unchanged. Apply dramatic artistic lighting with creative shadows and rim "
    "lighting effects. Position the person in a dynamic pose with emotional expression against an artistic "
    "background with depth and texture. Use advanced composition techniques including rule of thirds and "
    "creative depth of field for maximum visual impact.",
    "CREATIVE MASTERPIECE {index}: Remove the person's current clothing and dress them in the uploaded clothing "
    "items, keeping their face and body appearance the same. Create a visually stunning composition with "
    "artistic lighting, creative pose variations, and dramatic background elements. Apply mood and atmosphere "
    "through sophisticated color grading and artistic ambiance for a truly artistic result.",
    "VISUAL ARTWORK {index}: Transform the person's clothing to the uploaded items while preserving their facial "
    "features and body structure. Craft an artistic visual experience with creative lighting setups, dynamic "
    "pose expressions, and artistic background transformations. Incorporate advanced photography techniques "
    "including selective focus, artistic bokeh, and creative composition for a masterpiece result.",
    "ARTISTIC ENHANCEMENT {index}: Replace the person's current clothing with the uploaded clothing items, "
    "maintaining their face and body unchanged. Create an artistic visual narrative with dramatic lighting, "
    "creative shadow play, and sophisticated composition. Apply color theory principles and artistic depth of "
    "field effects for a creatively enhanced, visually stunning image.",
)


@dataclass
class PromptParseResult:
    prompts: List[str]
    expected_count: int
    synthesized_count: int = 0

    @property
    def shortfall(self) -> int:
        """Number of requested prompts that could not be produced."""
        return max(0, self.expected_count - len(self.prompts))

    @property
    def is_complete(self) -> bool:
        return self.shortfall == 0


def normalize_prompt(text: str) -> str:
    """Comparison key: lowercase with whitespace runs collapsed."""
    return " ".join((text or "").lower().split())


def strip_markup(text: str) -> str:
    """Remove leading prompt headers and unwrap ``**bold**`` / ``*italic*`` emphasis.

    Runs to a fixed point, so stripping already-stripped text returns it unchanged.
    """
    current = (text or "").strip()
    while True:
        stripped = LEADING_HEADER_RE.sub("", current, count=1)
        stripped = BOLD_RE.sub(r"\1", stripped)
        stripped = ITALIC_RE.sub(r"\1", stripped)
        stripped = stripped.strip()
        if stripped == current:
            return current
        current = stripped


def create_prompt_variation(base_prompt: str, index: int) -> str:
    """Return a generic try-on prompt for ``index``.

    ``base_prompt`` is accepted so callers can pass the theme they are padding,
    but the output depends on ``index`` alone.
    """
    template = PROMPT_VARIATIONS[index % len(PROMPT_VARIATIONS)]
    return template.format(index=index)


# Extraction strategies -------------------------------------------------------

def extract_structured_prompts(text: str) -> List[str]:
    """Chunks introduced by a heading line, with the heading removed."""
    matches = list(LINE_HEADER_RE.finditer(text))
    chunks = []
    for position, match in enumerate(matches):
        end = matches[position + 1].start() if position + 1 < len(matches) else len(text)
        chunks.append(text[match.end():end])
    return chunks


def extract_header_split_prompts(text: str) -> List[str]:
    """Text between header markers wherever they appear; the preamble is dropped."""
    parts = HEADER_RE.split(text)
    return parts[1:]


def extract_numbered_prompts(text: str) -> List[str]:
    parts = NUMBERED_SPLIT_RE.split(text)
    return parts[1:]


def extract_whole_text(text: str) -> List[str]:
    return [text]


def extract_paragraphs(text: str) -> List[str]:
    return [p for p in PARAGRAPH_SPLIT_RE.split(text) if p.strip()]


@dataclass(frozen=True)
class _Strategy:
    name: str
    extract: Callable[[str], List[str]]
    # reject candidates that merely contain prompts collected earlier
    reject_supersets: bool = False


EXTRACTION_STRATEGIES = (
    _Strategy("structured", extract_structured_prompts),
    _Strategy("header_split", extract_header_split_prompts),
    _Strategy("numbered", extract_numbered_prompts),
    _Strategy("whole_text", extract_whole_text, reject_supersets=True),
    _Strategy("paragraph", extract_paragraphs),
)


@dataclass
class _PromptCollector:
    expected_count: int
    prompts: List[str] = field(default_factory=list)
    seen: Set[str] = field(default_factory=set)

    @property
    def is_full(self) -> bool:
        return len(self.prompts) >= self.expected_count

    def offer(self, candidate: str, reject_supersets: bool = False) -> bool:
        prompt = strip_markup(candidate)
        if len(prompt) <= MIN_PROMPT_LENGTH:
            return False
        key = normalize_prompt(prompt)
        if key in self.seen:
            return False
        if reject_supersets and any(existing in key for existing in self.seen):
            return False
        self.seen.add(key)
        self.prompts.append(prompt)
        return True


def parse_prompts(prompt_text: Optional[str], expected_count: int) -> PromptParseResult:
    """Partition ``prompt_text`` into ``expected_count`` distinct prompts.

    Never raises. The result may hold fewer prompts than requested only when the
    synthesized variations collide with prompts already collected; check
    ``PromptParseResult.shortfall``.
    """
    text = prompt_text or ""
    expected = max(1, int(expected_count or 1))
    collector = _PromptCollector(expected_count=expected)

    logger.debug("Parsing prompts from text: %s...", text[:200])

    for strategy in EXTRACTION_STRATEGIES:
        if collector.is_full:
            break
        candidates = strategy.extract(text)
        if candidates:
            logger.debug("Strategy %s found %d candidate(s)", strategy.name, len(candidates))
        for candidate in candidates:
            if collector.is_full:
                break
            if collector.offer(candidate, reject_supersets=strategy.reject_supersets):
                logger.debug(
                    "Added %s prompt %d: %s...",
                    strategy.name, len(collector.prompts), collector.prompts[-1][:100],
                )

    synthesized = 0
    while not collector.is_full:
        base_prompt = collector.prompts[0] if collector.prompts else text
        variation = create_prompt_variation(base_prompt, len(collector.prompts) + 1)
        if not collector.offer(variation):
            logger.warning(
                "Variation pool exhausted: %d of %d prompts available",
                len(collector.prompts), expected,
            )
            break
        synthesized += 1

    result = PromptParseResult(
        prompts=collector.prompts[:expected],
        expected_count=expected,
        synthesized_count=synthesized,
    )
    logger.info(
        "Final prompts count: %d (synthesized=%d, shortfall=%d)",
        len(result.prompts), result.synthesized_count, result.shortfall,
    )
    return result


def parse_multiple_prompts(prompt_text: Optional[str], expected_count: int) -> List[str]:
    """List form of :func:`parse_prompts`; callers must tolerate a short list."""
    return parse_prompts(prompt_text, expected_count).prompts
