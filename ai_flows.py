"""
LLM flows: company summarization and header detection, both over OpenAI
chat completions in JSON mode.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from errors import SummarizeError
from models import HeaderMapping, SummaryResult, coerce_flag
from settings import OPENAI_API_KEY, OPENAI_MODEL

logger = logging.getLogger(__name__)

INSUFFICIENT_INFO_SUMMARY = (
    "Due to a website error or lack of information, "
    "the company’s business function could not be determined."
)

SUMMARIZE_SYSTEM_PROMPT = "You are a Transfer Pricing analyst. Return ONLY a valid JSON object."

SUMMARIZE_PROMPT = """Based on the provided Company Text, generate a JSON object with the following three keys: "summary", "independenceCriteria", and "insufficientInfo".

1. "summary": A formal 2-3 sentence company overview covering:
   - Main business activity
   - Key products/services offered
   - The industry or sector it operates in.
   If "insufficientInfo" is "Yes" (see below), this "summary" MUST be exactly: "{insufficient}"

2. "independenceCriteria": Output "Yes" if the text explicitly states or strongly implies the company is government-owned, a non-profit entity, or owned by/a subsidiary of another parent company. Otherwise, output "".

3. "insufficientInfo": Output "Yes" if the provided text is clearly broken, contains error messages, is completely irrelevant to describing the company's business (e.g., placeholder text, login pages), or is too minimal to determine the business function. Otherwise, output "".

Company Text:
{text}
"""

DETECT_HEADERS_PROMPT = """Given the following list of headers from a spreadsheet:
{headers}

Identify which one corresponds best to each of the following categories:
1. Company Name: headers like 'Company', 'Organization', 'Firm Name', 'Business Name'.
2. Country: headers like 'Country', 'Location', 'Region', 'Based In'.
3. Website URL: headers like 'Website', 'URL', 'Web Address', 'Homepage', 'Site'.

Return a JSON object with the keys "companyNameHeader", "countryHeader" and "websiteHeader".
Each value must be the exact header string from the list, or null if no header fits.
"""

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


class Summarizer(Protocol):
    async def summarize(self, text: str) -> SummaryResult:
        ...


def _parse_json_object(content: Optional[str]) -> dict:
    raw = _CODE_FENCE_RE.sub("", str(content or "").strip())
    if not raw:
        raise ValueError("empty response")
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
    return payload


async def _complete_json(client: AsyncOpenAI, model: str, system: str, prompt: str) -> dict:
    response = await client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        temperature=0.1,
        response_format={"type": "json_object"},
    )
    if not response or not response.choices:
        raise ValueError("no choices returned")
    return _parse_json_object(response.choices[0].message.content)


def insufficient_info_result() -> SummaryResult:
    return SummaryResult(
        summary=INSUFFICIENT_INFO_SUMMARY,
        independence_flag=False,
        insufficient_info_flag=True,
    )


class OpenAISummarizer:
    def __init__(self, client: AsyncOpenAI, model: str = OPENAI_MODEL):
        self.client = client
        self.model = model

    async def summarize(self, text: str) -> SummaryResult:
        """
        Summarize scraped company text.

        Raises:
            SummarizeError: the model call failed or returned something unusable.
        """
        if not str(text or "").strip():
            logger.warning("Summarizer received empty text; returning insufficient-info result")
            return insufficient_info_result()

        logger.info("Summarizing %d chars with %s", len(text), self.model)
        prompt = SUMMARIZE_PROMPT.format(insufficient=INSUFFICIENT_INFO_SUMMARY, text=text)
        try:
            payload = await _complete_json(self.client, self.model, SUMMARIZE_SYSTEM_PROMPT, prompt)
        except (OpenAIError, ValueError) as exc:
            raise SummarizeError(f"Summarization failed: {exc}") from exc

        summary = payload.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            raise SummarizeError("Summarization failed: response has no summary.")

        insufficient = coerce_flag(payload.get("insufficientInfo"))
        if insufficient and summary.strip() != INSUFFICIENT_INFO_SUMMARY:
            logger.warning("Model flagged insufficient info with a different summary; overriding")
            summary = INSUFFICIENT_INFO_SUMMARY

        return SummaryResult(
            summary=summary.strip(),
            independence_flag=coerce_flag(payload.get("independenceCriteria")),
            insufficient_info_flag=insufficient,
        )


class OpenAIHeaderSuggester:
    def __init__(self, client: AsyncOpenAI, model: str = OPENAI_MODEL):
        self.client = client
        self.model = model

    async def suggest(self, headers: list[str]) -> HeaderMapping:
        if not headers:
            return HeaderMapping()
        listing = "\n".join(f"- {header}" for header in headers)
        payload = await _complete_json(
            self.client,
            self.model,
            "You map spreadsheet headers to fields. Return ONLY a valid JSON object.",
            DETECT_HEADERS_PROMPT.format(headers=listing),
        )

        def _pick(key: str) -> Optional[str]:
            value = payload.get(key)
            if isinstance(value, str) and value in headers:
                return value
            if value:
                logger.warning("Model suggested unknown header %r for %s; ignoring", value, key)
            return None

        return HeaderMapping(
            name=_pick("companyNameHeader"),
            country=_pick("countryHeader"),
            website=_pick("websiteHeader"),
        )


def build_openai_client(api_key: str = OPENAI_API_KEY) -> Optional[AsyncOpenAI]:
    if not api_key:
        logger.warning("OPENAI_API_KEY not found - summarization will be disabled")
        return None
    return AsyncOpenAI(api_key=api_key)
