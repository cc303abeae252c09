import logging
import re
from collections.abc import Sequence
from typing import Any, Protocol

import requests
from pydantic import BaseModel, Field, ValidationError

from campusid.config import ORACLE_API_KEY, ORACLE_TIMEOUT_SECONDS, ORACLE_URL
from ledger.errors import OracleError
from ledger.models import Identity, MatchCandidate, RecognitionResult

logger = logging.getLogger(__name__)

_DATA_URL_PREFIX = re.compile(r"^data:image/(png|jpeg|jpg|webp);base64,")


class MatchOracle(Protocol):
    def match(self, probe_image: str, roster: Sequence[Identity]) -> RecognitionResult: ...


class _OracleMatch(BaseModel):
    userId: str
    confidence: float


class _OracleResponse(BaseModel):
    matches: list[_OracleMatch] = Field(default_factory=list)
    reasoning: str | None = None


def clean_base64(data: str) -> str:
    return _DATA_URL_PREFIX.sub("", data)


class HttpMatchOracle:
    """Client for the remote face-matching service.

    Sends the probe plus every reference image and returns the service's
    candidate list as-is; confidence filtering happens in reconciliation.
    """

    def __init__(
        self,
        url: str = ORACLE_URL,
        api_key: str = ORACLE_API_KEY,
        timeout: float = ORACLE_TIMEOUT_SECONDS,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout

    def _payload(self, probe_image: str, roster: Sequence[Identity]) -> dict[str, Any]:
        return {
            "probe": clean_base64(probe_image),
            "references": [
                {"id": u.id, "name": u.name, "image": clean_base64(u.image)}
                for u in roster
            ],
        }

    def match(self, probe_image: str, roster: Sequence[Identity]) -> RecognitionResult:
        if not self.api_key:
            raise OracleError("Oracle API key is missing. Set CAMPUSID_ORACLE_API_KEY.")

        if not roster:
            return RecognitionResult(matches=[], reasoning="No registered users to match against.")

        try:
            response = requests.post(
                self.url,
                json=self._payload(probe_image, roster),
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            logger.error("Oracle request failed: %s", e)
            raise OracleError(f"Identity match request failed: {e}") from e
        except ValueError as e:
            raise OracleError("Identity match service returned invalid JSON.") from e

        try:
            parsed = _OracleResponse.model_validate(body)
        except ValidationError as e:
            raise OracleError(f"Unexpected identity match response: {e.error_count()} error(s)") from e

        logger.info("Oracle returned %d candidate(s)", len(parsed.matches))
        return RecognitionResult(
            matches=[MatchCandidate(user_id=m.userId, confidence=m.confidence) for m in parsed.matches],
            reasoning=parsed.reasoning,
        )
