"""
Scoring Oracle Adapter

Wraps the external image-verification model behind a stable contract:

    score(image_bytes, ecosystem_type, lat, lng) -> ScoringResult

The oracle is treated as unreliable. Any error, timeout or malformed answer
resolves to a deterministic fallback result (confidence 0, reasoning stating
the failure) so ingestion always receives a well-formed response. No retries
and no side effects on the domain model.
"""
from __future__ import annotations

import asyncio
import base64
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from ... import config
from ...models.db_models import EcosystemType
from .errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


FALLBACK_CONTEXT = "Unknown"

SCORING_PROMPT = (
    "You are verifying field evidence for a blue-carbon restoration registry. "
    "The photo was submitted as a {ecosystem} restoration site at latitude {lat:.5f}, "
    "longitude {lng:.5f}. Judge whether the image genuinely shows healthy {ecosystem} "
    "restoration at a coastal site. Mention the word 'duplicate' in your reasoning if "
    "the image or location appears to repeat earlier evidence. Reply with JSON only: "
    '{{"confidence": <number 0..1>, "reasoning": <string>, '
    '"detectedFeatures": [<string>, ...], "environmentalContext": <string>}}'
)


@dataclass
class ScoringResult:
    """Oracle verdict for one image."""
    confidence: float
    reasoning: str
    detected_features: List[str] = field(default_factory=list)
    environmental_context: str = "Coastal"
    maps_url: Optional[str] = None
    failed: bool = False  # True when this is the fallback result


def fallback_result(reason: str) -> ScoringResult:
    """Deterministic result used whenever the oracle cannot answer."""
    return ScoringResult(
        confidence=0.0,
        reasoning=f"Automated verification failed: {reason}",
        detected_features=[],
        environmental_context=FALLBACK_CONTEXT,
        failed=True,
    )


def sniff_mime_type(image_bytes: bytes) -> Optional[str]:
    """Detect the image format from its magic bytes. None if unrecognised."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    if image_bytes[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if image_bytes[4:8] == b"ftyp" and image_bytes[8:12] in (b"heic", b"heix", b"mif1"):
        return "image/heic"
    return None


class ScoringOracle(ABC):
    """Contract every scoring backend implements."""

    @abstractmethod
    async def score(
        self,
        image_bytes: bytes,
        ecosystem_type: EcosystemType,
        lat: float,
        lng: float,
    ) -> ScoringResult:
        """Score one image; failures resolve to `fallback_result`."""


class GeminiScoringOracle(ScoringOracle):
    """Scores evidence images with the Gemini generateContent API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else config.ORACLE_API_KEY
        self.model = model or config.ORACLE_MODEL
        self.base_url = (base_url or config.ORACLE_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.ORACLE_TIMEOUT_SECONDS
        self._transport = transport

    async def score(
        self,
        image_bytes: bytes,
        ecosystem_type: EcosystemType,
        lat: float,
        lng: float,
    ) -> ScoringResult:
        """
        Score one image. Never raises; failures become the fallback result.
        """
        try:
            result = await asyncio.wait_for(
                self._call(image_bytes, ecosystem_type, lat, lng),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Scoring oracle timed out after {self.timeout}s")
            return fallback_result(f"oracle timed out after {self.timeout:g}s")
        except UpstreamUnavailable as e:
            logger.warning(f"Scoring oracle unavailable: {e.message}")
            return fallback_result(e.message)
        except Exception as e:
            logger.warning(f"Scoring oracle failed unexpectedly: {e!r}", exc_info=True)
            return fallback_result(f"oracle error ({type(e).__name__})")

        logger.info(
            f"Oracle scored {ecosystem_type.value} image: confidence={result.confidence:.2f}, "
            f"features={len(result.detected_features)}"
        )
        return result

    async def _call(
        self,
        image_bytes: bytes,
        ecosystem_type: EcosystemType,
        lat: float,
        lng: float,
    ) -> ScoringResult:
        if not self.api_key:
            raise UpstreamUnavailable("oracle API key not configured")

        mime_type = sniff_mime_type(image_bytes) or "image/jpeg"
        prompt = SCORING_PROMPT.format(ecosystem=ecosystem_type.value.lower(), lat=lat, lng=lng)
        payload = {
            "contents": [{
                "role": "user",
                "parts": [
                    {"inline_data": {
                        "mime_type": mime_type,
                        "data": base64.b64encode(image_bytes).decode("ascii"),
                    }},
                    {"text": prompt},
                ],
            }],
            "generationConfig": {
                "temperature": 0.0,
                "responseMimeType": "application/json",
            },
        }
        url = f"{self.base_url}/models/{self.model}:generateContent"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, params={"key": self.api_key})
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"oracle request failed ({type(e).__name__})") from e

        if response.status_code != 200:
            raise UpstreamUnavailable(f"oracle returned HTTP {response.status_code}")

        try:
            data = response.json()
            text = data["candidates"][0]["content"]["parts"][0]["text"]
            if not isinstance(text, str):
                raise TypeError(f"verdict text is {type(text).__name__}")
            verdict = json.loads(_strip_code_fence(text))
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise UpstreamUnavailable("oracle returned a malformed response") from e

        return _parse_verdict(verdict, lat, lng)


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text


def _parse_verdict(verdict: dict, lat: float, lng: float) -> ScoringResult:
    if not isinstance(verdict, dict):
        raise UpstreamUnavailable("oracle verdict is not an object")
    try:
        confidence = float(verdict["confidence"])
    except (KeyError, TypeError, ValueError) as e:
        raise UpstreamUnavailable("oracle verdict has no numeric confidence") from e
    if confidence != confidence:  # NaN
        raise UpstreamUnavailable("oracle verdict has no numeric confidence")

    features = verdict.get("detectedFeatures") or []
    if not isinstance(features, list):
        features = [features]

    return ScoringResult(
        confidence=min(max(confidence, 0.0), 1.0),
        reasoning=str(verdict.get("reasoning") or ""),
        detected_features=[str(f) for f in features],
        environmental_context=str(verdict.get("environmentalContext") or "Coastal"),
        maps_url=verdict.get("googleMapsUrl") or maps_url_for(lat, lng),
    )


def maps_url_for(lat: float, lng: float) -> str:
    return f"https://www.google.com/maps?q={lat:.6f},{lng:.6f}"


def get_scoring_oracle() -> ScoringOracle:
    """Dependency for FastAPI - the configured scoring oracle."""
    return GeminiScoringOracle()
