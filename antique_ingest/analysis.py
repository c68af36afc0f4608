# antique_ingest/analysis.py
"""Antique appraisal through an OpenAI-compatible chat completions API.

Requests go through a very small inference queue and are retried with
exponential backoff. Whatever comes back is validated field by field; a
missing or unusable payload becomes the fallback analysis instead of an error.
"""
import json
import math
import re
from functools import partial
from typing import Any, Optional

import httpx

from .rate_queue import RateLimitedQueue
from .schemas import AntiqueAnalysis, ListingData, RawPayload
from .utils import get_logger, retry

VALID_ASSESSMENTS = ("underpriced", "overpriced", "fair")
DEFAULT_ASSESSMENT = "fair"
FALLBACK_TEXT = "Analysis unavailable due to API error"

SYSTEM_PROMPT = """
You are an expert antique appraiser with decades of experience in identifying, authenticating, and valuing antiques.
Your task is to analyze the provided Craigslist antique listing and provide a comprehensive assessment.

Please analyze the provided information and return a JSON object with the following fields:
1. marketValue: Estimated fair market value in USD (numeric only)
2. pricingAssessment: Whether the item is "underpriced", "overpriced", or "fair" based on the listing price
3. pricingConfidence: Your confidence in the pricing assessment (0.0-1.0)
4. authenticityScore: Likelihood that the item is authentic (0.0-1.0)
5. authenticityTips: Specific visual or descriptive markers to look for to determine authenticity
6. historicalContext: Brief historical context about this type of antique
7. additionalNotes: Any other relevant observations or recommendations

Base your analysis on the description, images, price, and any other provided information.
If critical information is missing, make reasonable inferences but note your uncertainty.

Always provide your best expert assessment even with limited information.
Your analysis will be stored in a database and used to help evaluate antique listings.
"""

# thousands separators, whitespace and currency signs
_NUMBER_NOISE = re.compile(r"[\s,$€£¥]")


class RateLimitError(Exception):
    """The inference API answered 429."""


def default_analysis() -> AntiqueAnalysis:
    return AntiqueAnalysis(
        market_value=0.0,
        pricing_assessment=DEFAULT_ASSESSMENT,
        pricing_confidence=0.0,
        authenticity_score=0.0,
        authenticity_tips=FALLBACK_TEXT,
        historical_context=FALLBACK_TEXT,
        additional_notes="Please try analyzing this item again later",
    )


def validate_number(value: Any, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str):
        value = _NUMBER_NOISE.sub("", value)
        if not value:
            return default
    try:
        num = float(value)
    except (TypeError, ValueError):
        return default
    return num if math.isfinite(num) else default


def validate_confidence(value: Any) -> float:
    return max(0.0, min(1.0, validate_number(value, 0.0)))


def validate_pricing_assessment(value: Any) -> str:
    text = str(value).strip().lower()
    return text if text in VALID_ASSESSMENTS else DEFAULT_ASSESSMENT


def validate_string(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _field(payload: RawPayload, camel: str, snake: str) -> Any:
    return payload[camel] if camel in payload else payload.get(snake)


def validate_analysis(payload: RawPayload) -> AntiqueAnalysis:
    return AntiqueAnalysis(
        market_value=validate_number(_field(payload, "marketValue", "market_value"), 0.0),
        pricing_assessment=validate_pricing_assessment(_field(payload, "pricingAssessment", "pricing_assessment")),
        pricing_confidence=validate_confidence(_field(payload, "pricingConfidence", "pricing_confidence")),
        authenticity_score=validate_confidence(_field(payload, "authenticityScore", "authenticity_score")),
        authenticity_tips=validate_string(
            _field(payload, "authenticityTips", "authenticity_tips"), "No specific tips provided"
        ),
        historical_context=validate_string(
            _field(payload, "historicalContext", "historical_context"), "No historical context available"
        ),
        additional_notes=validate_string(_field(payload, "additionalNotes", "additional_notes"), "No additional notes"),
    )


def _strip_code_fence(content: str) -> str:
    if "```json" in content:
        return content.split("```json")[1].split("```")[0]
    if "```" in content:
        return content.split("```")[1].split("```")[0]
    return content


def parse_analysis_response(content: Optional[str], logger=None) -> AntiqueAnalysis:
    log = logger or get_logger("AnalysisClient")
    if not content or not content.strip():
        log.error("Empty response from inference API")
        return default_analysis()
    try:
        parsed = json.loads(_strip_code_fence(content).strip())
    except ValueError as e:
        log.error("Error parsing inference response: %s", e)
        log.debug("Raw response: %s", content)
        return default_analysis()
    if not isinstance(parsed, dict) or not parsed:
        log.error("Inference response is not a JSON object with fields")
        return default_analysis()
    return validate_analysis(parsed)


def _attribute_text(value) -> str:
    return str(value).lower() if isinstance(value, bool) else str(value)


def build_user_prompt(listing: ListingData) -> str:
    attributes = "\n".join(f"{key}: {_attribute_text(value)}" for key, value in listing.attributes.items())
    price = f"${listing.price:,.2f}" if listing.price is not None else "Not specified"
    return f"""
Please analyze this Craigslist antique listing:

TITLE: {listing.title}

PRICE: {price}

LOCATION: {listing.location}

POSTED DATE: {listing.posted_date.strftime("%a %b %d %Y")}

DESCRIPTION:
{listing.description}

ADDITIONAL ATTRIBUTES:
{attributes}

IMAGE INFORMATION: {len(listing.image_urls)} images are available in the listing

Based on this information, provide your expert antique analysis in JSON format.
"""


def _message_content(data: Any) -> Optional[str]:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) else None


class AnalysisClient:
    def __init__(self, settings, queue: Optional[RateLimitedQueue] = None, client: Optional[httpx.AsyncClient] = None,
                 logger=None):
        self.settings = settings
        self.logger = logger or get_logger("AnalysisClient")
        self.queue = queue or RateLimitedQueue(
            concurrency=settings.concurrent_requests,
            interval_cap=settings.requests_per_minute,
            interval=60.0,
            name="inference",
        )
        if client is None:
            headers = {}
            if settings.api_key:
                headers["Authorization"] = f"Bearer {settings.api_key}"
            else:
                self.logger.warning("OPENAI_API_KEY not set; requests will be unauthenticated")
            client = httpx.AsyncClient(base_url=settings.base_url, timeout=settings.timeout, headers=headers)
        self._client = client
        self._request_with_retry = retry(
            Exception,
            tries=settings.max_retries,
            delay=settings.retry_base_delay,
            backoff=2,
            logger=self.logger,
        )(self._request_analysis)

    async def close(self):
        await self._client.aclose()

    async def analyze_antique(self, listing: ListingData) -> AntiqueAnalysis:
        """Analyze a listing; never raises, falls back to `default_analysis()`."""
        self.logger.info("Analyzing antique: %s", listing.title)
        try:
            return await self.analyze(listing)
        except Exception as e:
            self.logger.error("Error analyzing antique %s: %s", listing.title, e)
            return default_analysis()

    async def analyze(self, listing: ListingData) -> AntiqueAnalysis:
        """Queue the analysis and retry it; raises once every attempt has failed."""
        return await self.queue.submit(partial(self._request_with_retry, listing))

    def build_request(self, listing: ListingData) -> dict:
        return {
            "model": self.settings.model,
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(listing)},
            ],
            "response_format": {"type": "json_object"},
        }

    async def _request_analysis(self, listing: ListingData) -> AntiqueAnalysis:
        response = await self._client.post("/chat/completions", json=self.build_request(listing))
        if response.status_code == 429:
            self.logger.warning("Rate limit hit while analyzing %s", listing.title)
            raise RateLimitError(f"rate limited: {response.text[:200]}")
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError:
            data = None
        analysis = parse_analysis_response(_message_content(data), logger=self.logger)
        self.logger.info("Successfully analyzed: %s", listing.title)
        return analysis
