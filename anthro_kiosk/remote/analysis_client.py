"""aiohttp client for the external vision-analysis service."""

from __future__ import annotations

from typing import Any, Optional

import aiohttp

from ..core.errors import AnalysisError, AnalysisErrorKind
from ..core.logging_utils import get_module_logger

logger = get_module_logger(__name__)

DEFAULT_CAPTURE_PATH = "/capture"
DEFAULT_CALIBRATE_PATH = "/calibrate/aruco"


def _format_age(age: float) -> str:
    return str(int(age)) if float(age).is_integer() else str(age)


class AnalysisClient:
    def __init__(
        self,
        base_url: str,
        *,
        capture_path: str = DEFAULT_CAPTURE_PATH,
        calibrate_path: str = DEFAULT_CALIBRATE_PATH,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._capture_path = capture_path
        self._calibrate_path = calibrate_path
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "AnalysisClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def analyze(self, image: bytes, *, gender: str, age: float) -> dict[str, Any]:
        form = aiohttp.FormData()
        form.add_field("file", image, filename="capture.jpg", content_type="image/jpeg")
        params = {"gender": gender, "age": _format_age(age)}
        return await self._post(self._capture_path, form, params)

    async def calibrate(self, image: bytes) -> dict[str, Any]:
        form = aiohttp.FormData()
        form.add_field("file", image, filename="aruco.jpg", content_type="image/jpeg")
        return await self._post(self._calibrate_path, form)

    async def _post(
        self,
        path: str,
        form: aiohttp.FormData,
        params: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        session = self._ensure_session()
        try:
            async with session.post(url, data=form, params=params) as response:
                if not 200 <= response.status < 300:
                    logger.warning("POST %s rejected with HTTP %d", path, response.status)
                    raise AnalysisError(AnalysisErrorKind.SERVICE_REJECTED, status_code=response.status)
                try:
                    body = await response.json(content_type=None)
                except ValueError as e:
                    raise AnalysisError(
                        AnalysisErrorKind.MALFORMED_RESPONSE, f"Response from {path} is not JSON"
                    ) from e
        except aiohttp.ClientError as e:
            logger.warning("POST %s failed: %s", path, e)
            raise AnalysisError(AnalysisErrorKind.UNREACHABLE, f"Analysis service unreachable: {e}") from e

        if not isinstance(body, dict):
            raise AnalysisError(AnalysisErrorKind.MALFORMED_RESPONSE, f"Response from {path} is not an object")
        return body


__all__ = ["AnalysisClient", "DEFAULT_CAPTURE_PATH", "DEFAULT_CALIBRATE_PATH"]
