"""
extraction.py — The language-model boundary.

Three jobs are handed to a local instruct model (llama-cpp-python):

  1. Pull rate entries out of pasted schedule-of-rates text.
  2. Pull tender line items out of pasted tender text.
  3. Given a tender item and the catalog's (id, name) list, name the
     catalog id that best fits, or null.

Everything else (exact matching, cheapest pick, statuses, totals) is
plain Python in matching.py and quotation.py, because those rules have
to be reproducible and the model is not.

The contract with callers is simple: these functions never raise.
Model missing, generation failed, timed out, produced garbage: log it
and return [] or None. A tender with twenty lines should not lose the
other nineteen because the model choked on one.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from smartrate.config import config
from smartrate.schemas import CatalogSummaryItem, RateEntryDraft, TenderItemDraft

logger = logging.getLogger(__name__)

# Loading a 7B GGUF takes several seconds; do it once per process.
_llm_instance = None

# Llama contexts are not thread-safe. One worker means one generation at a time.
_llm_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llm")


# ── Prompt Templates ──────────────────────────────────────────────────────
# Double braces are str.format escaping, not a typo.

RATE_EXTRACTION_PROMPT = """[INST] You extract Schedule of Rates (SOR) items from text.

RULES:
1. Extract ONLY items present in the text. Do NOT invent items or prices.
2. "rate" is a plain number per unit, no currency symbols or commas.
3. Use "" for a missing unit, scopeOfWork or source.
4. Respond ONLY with a JSON array, no markdown fences, no explanation.

OUTPUT FORMAT:
[
  {{"name": "...", "unit": "...", "rate": <number>, "scopeOfWork": "...", "source": "..."}}
]

TEXT:
{text}
[/INST]"""

TENDER_EXTRACTION_PROMPT = """[INST] You extract tender line items from text.

RULES:
1. One object per requested item. Do NOT merge or invent items.
2. "quantity" is a number; use 1 if the text gives none.
3. "requestedScope" is the work/specification asked for, copied from the text.
4. "estimatedRate" is a number only if the text states an estimate or price per unit, otherwise null.
5. Respond ONLY with a JSON array, no markdown fences, no explanation.

OUTPUT FORMAT:
[
  {{"name": "...", "quantity": <number>, "requestedScope": "...", "estimatedRate": <number or null>}}
]

TEXT:
{text}
[/INST]"""

MATCH_PROMPT = """[INST] I have a tender item: "{name}" with scope: "{scope}".
From the database list below, find the ID of the best matching item.
Return null if no reasonable match is found.

Database Items:
{items}

Respond ONLY with JSON: {{"matchedId": "<ID>"}} or {{"matchedId": null}}
[/INST]"""


def _get_llm():
    """Lazy-load the instruct model. Cached at module level."""
    global _llm_instance
    if _llm_instance is not None:
        return _llm_instance

    try:
        from llama_cpp import Llama

        logger.info("Loading LLM from: %s", config.llm.model_path)
        _llm_instance = Llama(
            model_path=config.llm.model_path,
            n_ctx=config.llm.n_ctx,
            n_threads=config.llm.n_threads or None,
            verbose=False,
        )
        logger.info("LLM loaded successfully.")
        return _llm_instance
    except FileNotFoundError:
        raise RuntimeError(
            f"LLM model file not found: '{config.llm.model_path}'. "
            f"Set the LLM_MODEL_PATH environment variable to a GGUF model."
        )
    except Exception as exc:
        raise RuntimeError(f"Failed to load LLM: {exc}") from exc


def _llm_generate(prompt: str) -> str:
    """Blocking generation with retry and exponential backoff."""
    llm = _get_llm()
    last_error = None

    for attempt in range(1, config.llm.max_retries + 1):
        try:
            response = llm(
                prompt,
                max_tokens=config.llm.max_tokens,
                temperature=config.llm.temperature,
                stop=["```", "\n\n\n"],
            )
            text = response["choices"][0]["text"].strip()
            logger.debug(
                "LLM generated %d chars on attempt %d/%d",
                len(text), attempt, config.llm.max_retries
            )
            return text
        except Exception as exc:
            last_error = exc
            if attempt == config.llm.max_retries:
                break
            delay = config.llm.retry_base_delay * (2 ** (attempt - 1))
            logger.warning(
                "LLM attempt %d/%d failed: %s. Retrying in %.1fs.",
                attempt, config.llm.max_retries, exc, delay
            )
            time.sleep(delay)

    raise RuntimeError(
        f"LLM generation failed after {config.llm.max_retries} retries: {last_error}"
    )


async def _generate(prompt: str) -> str:
    """
    Run the blocking model call off the event loop, with a timeout.

    Every call goes through the one-worker executor. A timeout only stops
    us waiting; the generation already running keeps the model until it
    finishes, and the next prompt queues behind it.
    """
    loop = asyncio.get_running_loop()
    return await asyncio.wait_for(
        loop.run_in_executor(_llm_executor, _llm_generate, prompt),
        timeout=config.llm.timeout_seconds,
    )


# ── Public adapter ────────────────────────────────────────────────────────

async def extract_rate_entries(text: str) -> List[RateEntryDraft]:
    """Extract rate entry drafts from free text. [] on any failure."""
    if not text or not text.strip():
        return []
    records = await _extract_records(RATE_EXTRACTION_PROMPT.format(text=text), "rates")
    drafts = _validate_records(records, RateEntryDraft)
    logger.info("Extracted %d rate entries (%d raw records)", len(drafts), len(records))
    return drafts


async def extract_tender_items(text: str) -> List[TenderItemDraft]:
    """Extract tender line drafts from free text. [] on any failure."""
    if not text or not text.strip():
        return []
    records = await _extract_records(TENDER_EXTRACTION_PROMPT.format(text=text), "items")
    drafts = _validate_records(records, TenderItemDraft)
    logger.info("Extracted %d tender items (%d raw records)", len(drafts), len(records))
    return drafts


async def find_best_match(
    target_name: str,
    target_scope: str,
    catalog_summary: Sequence[CatalogSummaryItem],
) -> Optional[str]:
    """
    Ask the model for the best catalog id for a tender item.

    An empty catalog returns None without calling the model. An id the
    model makes up (not present in the summary) is also None.
    """
    if not catalog_summary:
        return None

    listing = "\n".join(f"- {item.name} (ID: {item.id})" for item in catalog_summary)
    prompt = MATCH_PROMPT.format(name=target_name, scope=target_scope, items=listing)

    try:
        raw_output = await _generate(prompt)
    except asyncio.TimeoutError:
        logger.warning("Match timed out for '%s'", target_name)
        return None
    except Exception as exc:
        logger.error("Match error for '%s': %s", target_name, exc)
        return None

    parsed = _parse_json_output(raw_output)
    if not isinstance(parsed, dict):
        logger.warning("Unusable match output for '%s': %s", target_name, raw_output[:200])
        return None

    matched_id = parsed.get("matchedId")
    if not matched_id or not isinstance(matched_id, str):
        return None

    known = {item.id for item in catalog_summary}
    if matched_id not in known:
        logger.warning("Model returned unknown id '%s' for '%s'", matched_id, target_name)
        return None
    return matched_id


# ── Internals ─────────────────────────────────────────────────────────────

async def _extract_records(prompt: str, list_key: str) -> List[Dict[str, Any]]:
    try:
        raw_output = await _generate(prompt)
    except asyncio.TimeoutError:
        logger.warning("Extraction timed out after %.0fs", config.llm.timeout_seconds)
        return []
    except Exception as exc:
        logger.error("Extraction error: %s", exc)
        return []

    parsed = _parse_json_output(raw_output)
    if parsed is None:
        logger.error(
            "Could not parse LLM output as JSON. First 500 chars: %s",
            raw_output[:500]
        )
        return []

    # Some models wrap the array: {"items": [...]}.
    if isinstance(parsed, dict):
        parsed = parsed.get(list_key, next(
            (v for v in parsed.values() if isinstance(v, list)), []
        ))

    if not isinstance(parsed, list):
        logger.error("Expected a JSON array from LLM, got %s", type(parsed).__name__)
        return []
    return [r for r in parsed if isinstance(r, dict)]


def _validate_records(records: List[Dict[str, Any]], model) -> list:
    valid = []
    for idx, record in enumerate(records):
        try:
            valid.append(model.model_validate(record))
        except ValidationError as exc:
            logger.warning(
                "Skipping extracted record %d (%s): %d validation error(s)",
                idx, record.get("name", "?"), exc.error_count()
            )
    return valid


def _parse_json_output(text: str) -> Optional[Any]:
    """
    Multi-strategy JSON parser for model output.

    1. Direct parse
    2. Strip markdown fences and retry
    3. Regex out the first array, then the first object
    4. Give up and return None
    """
    if not text:
        return None

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    cleaned = re.sub(r"```(?:json)?\s*", "", text)
    cleaned = cleaned.strip().rstrip("`")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for pattern in (r"\[[\s\S]*\]", r"\{[\s\S]*\}"):
        match = re.search(pattern, cleaned)
        if match:
            try:
                return json.loads(match.group())
            except json.JSONDecodeError:
                continue

    return None
