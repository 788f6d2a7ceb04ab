"""Async wrapper around the clinic REST API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from clinicflow.core.settings import UpstreamSettings

logger = logging.getLogger(__name__)


class ClinicApiError(RuntimeError):
    """Raised when the clinic API fails or rejects a request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: str | None = None,
        payload: Any = None,
        method: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail
        self.payload = payload
        self.method = method
        self.path = path

    def describe(self, fallback: str) -> str:
        """Return the upstream detail verbatim, else ``fallback``."""
        return self.detail or fallback


@dataclass(slots=True, frozen=True)
class UploadPart:
    """A single file sent in a multipart request."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


def extract_detail(payload: Any) -> str | None:
    """Pull a human readable message out of an error body."""

    if isinstance(payload, Mapping):
        detail = payload.get("detail")
        if isinstance(detail, str) and detail.strip():
            return detail
        if isinstance(detail, list) and detail:
            return "; ".join(str(item) for item in detail)
        errors = payload.get("non_field_errors")
        if isinstance(errors, list) and errors:
            return "; ".join(str(item) for item in errors)
        return None
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    return None


def as_list(payload: Any) -> list[Any]:
    """Normalize a bare array or a ``{results: [...]}`` page to a list."""

    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        results = payload.get("results")
        if isinstance(results, list):
            return results
    return []


def count_of(payload: Any) -> int:
    """Return the envelope ``count`` when present, else the list length."""

    if isinstance(payload, Mapping):
        count = payload.get("count")
        if isinstance(count, int) and not isinstance(count, bool):
            return count
    return len(as_list(payload))


class ClinicApiClient:
    """Thin JSON client bound to a set of forwarded headers."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._http = http
        self._headers = dict(headers or {})

    @classmethod
    def build(
        cls,
        settings: UpstreamSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ClinicApiClient":
        http = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.timeout,
            transport=transport,
        )
        headers: dict[str, str] = {}
        if settings.service_token:
            headers["Authorization"] = f"Bearer {settings.service_token}"
        return cls(http, headers=headers)

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    def bind(
        self,
        *,
        authorization: str | None = None,
        request_id: str | None = None,
    ) -> "ClinicApiClient":
        """Return a client sharing the connection pool with extra headers."""

        headers = dict(self._headers)
        if authorization:
            headers["Authorization"] = authorization
        if request_id:
            headers["X-Request-ID"] = request_id
        return ClinicApiClient(self._http, headers=headers)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        data: Mapping[str, Any] | None = None,
        files: list[tuple[str, tuple[str, bytes, str]]] | None = None,
    ) -> Any:
        url = path.lstrip("/")
        try:
            response = await self._http.request(
                method,
                url,
                params=params,
                json=json,
                data=data,
                files=files,
                headers=self._headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("Clinic API %s %s failed: %s", method, url, exc)
            raise ClinicApiError(
                "Clinic API is unreachable", method=method, path=url
            ) from exc

        payload = self._decode(response)
        if response.is_error:
            detail = extract_detail(payload)
            logger.warning(
                "Clinic API %s %s returned %s", method, url, response.status_code
            )
            raise ClinicApiError(
                f"Clinic API returned {response.status_code}",
                status_code=response.status_code,
                detail=detail,
                payload=payload,
                method=method,
                path=url,
            )
        logger.debug("Clinic API %s %s -> %s", method, url, response.status_code)
        return payload

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def get(self, path: str, *, params: Mapping[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self.request("POST", path, json=json)

    async def patch(self, path: str, json: Any = None) -> Any:
        return await self.request("PATCH", path, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    async def upload(
        self,
        path: str,
        part: UploadPart,
        *,
        fields: Mapping[str, Any] | None = None,
        file_field: str = "files",
    ) -> Any:
        """POST one file as multipart form data."""

        files = [(file_field, (part.filename, part.content, part.content_type))]
        return await self.request("POST", path, data=dict(fields or {}), files=files)

    async def ping(self) -> int | None:
        """Status code of the API root, or ``None`` when the host cannot be reached."""

        try:
            response = await self._http.get("", headers=self._headers)
        except httpx.HTTPError as exc:
            logger.warning("Clinic API ping failed: %s", exc)
            return None
        return response.status_code

    async def aclose(self) -> None:
        await self._http.aclose()


__all__ = [
    "ClinicApiClient",
    "ClinicApiError",
    "UploadPart",
    "as_list",
    "count_of",
    "extract_detail",
]
