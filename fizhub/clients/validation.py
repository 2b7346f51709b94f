"""
Validation Service Client
-------------------------
POST {VALIDATION_URL}/api/validate_uids  {"uids": [...]}
  -> {"valid": true, "accounts": [...]} | {"valid": false, "reason": "..."}

Retries VALIDATION_RETRY_COUNT extra times with a fixed delay. Every failure
that is not a well-formed answer from the service (network error, non-2xx,
undecodable body) surfaces as ValidationTransportError.
"""
from __future__ import annotations

import time
from typing import List, Optional, Sequence

import httpx
from pydantic import BaseModel, Field

from fizhub.core.errors import ValidationTransportError
from fizhub.observability.logging import log
from fizhub.settings import settings

VALIDATE_PATH = "/api/validate_uids"


class ValidationResult(BaseModel):
    valid: bool
    accounts: List[str] = Field(default_factory=list)
    reason: str = ""


class ValidationClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout_sec: Optional[float] = None,
        retry_count: Optional[int] = None,
        retry_delay_sec: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.VALIDATION_URL).rstrip("/")
        self.timeout_sec = float(timeout_sec if timeout_sec is not None else settings.VALIDATION_TIMEOUT_SEC)
        self.retry_count = max(0, int(retry_count if retry_count is not None else settings.VALIDATION_RETRY_COUNT))
        self.retry_delay_sec = float(
            retry_delay_sec if retry_delay_sec is not None else settings.VALIDATION_RETRY_DELAY_SEC
        )
        self._client = client or httpx.Client(timeout=self.timeout_sec)

    def validate_uids(self, uids: Sequence[str]) -> ValidationResult:
        payload = {"uids": list(uids)}
        url = f"{self.base_url}{VALIDATE_PATH}"
        last_err: Optional[Exception] = None

        for attempt in range(self.retry_count + 1):
            if attempt > 0:
                time.sleep(self.retry_delay_sec)
            try:
                resp = self._client.post(url, json=payload, headers={"Content-Type": "application/json"})
                resp.raise_for_status()
                return ValidationResult.model_validate(resp.json())
            except (httpx.HTTPError, ValueError) as e:
                # ValueError covers a non-JSON body and pydantic rejecting its shape
                last_err = e
                log(
                    event="validation_attempt_failed",
                    attempt=attempt + 1,
                    url=url,
                    errorType=type(e).__name__,
                    error=str(e)[:300],
                )

        raise ValidationTransportError(
            f"validate uids request failed after {self.retry_count + 1} attempt(s): {last_err}"
        )

    def close(self) -> None:
        self._client.close()
