"""Reasoning generators turning a recorded step into a short explanation."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Protocol

from pydantic_ai import Agent

from ..models import Step

logger = logging.getLogger(__name__)

REASONING_PROMPT = """You are an AI pipeline observability expert. Generate a concise 1-2 sentence explanation for this step.

Input: {input}

Output: {output}

Rules:
- Be specific and mention counts, thresholds, or key decisions
- Use neutral, technical language
- Do NOT restate raw data verbatim
- ONLY return the reasoning text, no JSON formatting

Reasoning:"""

DEFAULT_MODEL = "openai:gpt-4o-mini"


class ReasoningGenerator(Protocol):
    """Any async callable producing reasoning text for a step."""

    async def __call__(self, step: Step) -> str: ...


def _get(obj: Any, key: str) -> Any:
    return obj.get(key) if isinstance(obj, dict) else None


def _first(*values: Any) -> Any:
    return next((v for v in values if v is not None), None)


def _length(value: Any) -> Optional[int]:
    return len(value) if isinstance(value, (list, tuple)) else None


def _collection_size(obj: Any) -> Optional[int]:
    if isinstance(obj, (list, tuple)):
        return len(obj)
    for key in ("candidates", "items", "remaining", "ranked_candidates"):
        size = _length(_get(obj, key))
        if size is not None:
            return size
    return None


def numeric_reasoning(step: Step) -> Optional[str]:
    """Summarize common step shapes from counts in the step data.

    Returns ``None`` when no pattern applies.
    """
    input_ = step.input if step.input is not None else {}
    output = step.output if step.output is not None else {}

    ranked = _get(output, "ranked_candidates")
    selection = _get(output, "selection")
    if ranked and selection:
        count = _length(ranked) or 0
        title = _first(_get(selection, "title"), _get(selection, "asin")) or "top choice"
        return f'Ranked {count} candidate(s) and selected "{title}" as top choice'

    total = _first(_get(output, "total_evaluated"), _length(_get(output, "evaluated")))
    passed = _first(
        _get(output, "passed"),
        _get(output, "accepted"),
        _length(_get(output, "remaining")),
    )
    if total and passed is not None:
        return f"{passed}/{total} passed"

    found = _first(
        _get(output, "total_results"), _get(output, "total_found"), _get(output, "total")
    )
    returned = _first(
        _get(output, "candidates_fetched"), _length(_get(output, "candidates"))
    )
    if found and returned:
        return f"{found}→{returned} results"

    input_count = _collection_size(input_)
    output_count = _collection_size(output)
    if input_count and output_count and input_count != output_count:
        return f"{input_count}→{output_count} items"

    return None


def _error_summary(step: Step) -> str:
    return f"{step.name} failed: {step.error}"


def create_simple_generator() -> ReasoningGenerator:
    """Return a generator that never calls an LLM."""

    async def generate(step: Step) -> str:
        if step.error:
            return _error_summary(step)
        reasoning = numeric_reasoning(step)
        if reasoning:
            return reasoning
        return f"{step.name} processed ({step.duration_ms or 0}ms)"

    return generate


def clean_response(text: str) -> str:
    """Strip prompt echoes and code fences from a model answer."""
    cleaned = re.sub(r"^Reasoning:\s*", "", text.strip(), flags=re.IGNORECASE)
    cleaned = re.sub(r"```json\s*", "", cleaned)
    cleaned = re.sub(r"```\s*", "", cleaned)
    return cleaned.strip()


def build_prompt(step: Step) -> str:
    return REASONING_PROMPT.format(
        input=json.dumps(step.input if step.input is not None else {}, default=str),
        output=json.dumps(step.output if step.output is not None else {}, default=str),
    )


def create_agent_generator(
    agent: Agent | None = None, model: str = DEFAULT_MODEL
) -> ReasoningGenerator:
    """Return a generator backed by a pydantic-ai agent.

    The numeric heuristic is tried first. Failures raised by the agent
    propagate unchanged so the queue can classify and retry them.
    """
    llm = agent or Agent(model, output_type=str)

    async def generate(step: Step) -> str:
        logger.debug(f"Generating reasoning for step: {step.name}")

        reasoning = numeric_reasoning(step)
        if reasoning:
            logger.debug(f"Using numeric reasoning: {reasoning!r}")
            return reasoning

        if step.error:
            return _error_summary(step)

        result = await llm.run(build_prompt(step))
        raw = str(result.output or "").strip()
        logger.debug(f"Raw response ({len(raw)} chars): {raw!r}")

        reasoning = clean_response(raw)
        if not reasoning or (reasoning.startswith("{") and not reasoning.endswith("}")):
            logger.warning(
                f"Unusable response for step {step.name}, falling back to summary"
            )
            return numeric_reasoning(step) or f"Processed {step.name}"
        return reasoning

    return generate
