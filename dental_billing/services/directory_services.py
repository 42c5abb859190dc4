# services/directory_services.py
from typing import List, Optional
import logging

import httpx

from dental_billing.model import DoctorRecord, PatientRecord, ProductRecord
from dental_billing.services.retry import RetryPolicy

logger = logging.getLogger(__name__)


class DirectoryError(Exception):
    pass


class DirectoryUnavailable(DirectoryError):
    pass


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


class DirectoryClient:
    """Read-only client for the clinic's patient, doctor and product directory."""

    def __init__(self, base_url: str, retry_policy: Optional[RetryPolicy] = None, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.transport = transport

    async def _get(self, path: str, params: Optional[dict] = None):
        async def fetch():
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                         transport=self.transport) as client:
                resp = await client.get(path, params=params)
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.json()

        try:
            return await self.retry_policy.run(fetch, should_retry=_is_retryable)
        except TimeoutError as exc:
            logger.error("[Directory] %s timed out", path)
            raise DirectoryUnavailable(f"Directory lookup {path} timed out") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.error("[Directory] %s failed (%s): %s", path, status, exc.response.text)
            if status >= 500:
                raise DirectoryUnavailable(f"Directory returned {status} for {path}") from exc
            raise DirectoryError(f"Directory rejected {path} ({status})") from exc
        except httpx.TransportError as exc:
            logger.error("[Directory] %s unreachable: %s", path, exc)
            raise DirectoryUnavailable(f"Directory unreachable for {path}") from exc

    async def get_patient(self, patient_id: str) -> Optional[PatientRecord]:
        data = await self._get(f"/patients/{patient_id}")
        return PatientRecord.model_validate(data) if data else None

    async def get_doctor(self, doctor_id: str) -> Optional[DoctorRecord]:
        data = await self._get(f"/doctors/{doctor_id}")
        return DoctorRecord.model_validate(data) if data else None

    async def list_products(self, category: Optional[str] = None) -> List[ProductRecord]:
        params = {"category": category} if category else None
        data = await self._get("/products", params=params) or {}
        return [ProductRecord.model_validate(p) for p in data.get("products", [])]
