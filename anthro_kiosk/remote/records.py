"""Subject lookup and result persistence against a PostgREST-style store.

Subjects are read from ``subjects_table`` by ``nik``. A saved examination is
one row in ``results_table`` per (nik, tanggal_pemeriksaan); saving twice on
the same day overwrites the first row. The annotated image is uploaded to
object storage first and the row stores its public URL.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping, Optional, Protocol

import aiohttp

from ..capture.analysis import AnalysisResult
from ..core.errors import RecordError, RecordErrorKind
from ..core.logging_utils import get_module_logger

logger = get_module_logger(__name__)

_SUBJECT_COLUMNS = "nik,nama,tanggal_lahir,gender,umur,tempat_lahir"
_UPSERT_CONFLICT_KEY = "nik,tanggal_pemeriksaan"


@dataclass(frozen=True)
class SubjectInfo:
    subject_id: str
    age_years: float
    gender: str
    name: str = ""
    birth_date: str = ""
    birth_place: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SubjectInfo":
        try:
            subject_id = str(row["nik"])
            age = float(row["umur"])
        except (KeyError, TypeError, ValueError) as e:
            raise RecordError(RecordErrorKind.REJECTED, f"Incomplete subject record: {e!r}") from e
        return cls(
            subject_id=subject_id,
            age_years=age,
            gender=str(row.get("gender") or ""),
            name=str(row.get("nama") or ""),
            birth_date=str(row.get("tanggal_lahir") or ""),
            birth_place=str(row.get("tempat_lahir") or ""),
        )


@dataclass(frozen=True)
class SavedRecord:
    subject_id: str
    examined_on: date
    image_url: Optional[str] = None


class SubjectDirectory(Protocol):
    async def fetch_subject(self, subject_id: str) -> SubjectInfo: ...


class ResultStore(Protocol):
    async def save_result(
        self, subject: SubjectInfo, result: AnalysisResult, examined_on: date
    ) -> SavedRecord: ...


class RestRecordStore:
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        subjects_table: str = "DataAnak",
        results_table: str = "Analisis",
        image_bucket: str = "pemindaian",
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._subjects_table = subjects_table
        self._results_table = results_table
        self._image_bucket = image_bucket
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "RestRecordStore":
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

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = dict(extra)
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def public_image_url(self, path: str) -> str:
        return f"{self._base_url}/storage/v1/object/public/{self._image_bucket}/{path}"

    async def fetch_subject(self, subject_id: str) -> SubjectInfo:
        url = f"{self._base_url}/rest/v1/{self._subjects_table}"
        params = {"select": _SUBJECT_COLUMNS, "nik": f"eq.{subject_id}"}
        try:
            async with self._ensure_session().get(url, params=params, headers=self._headers()) as response:
                if response.status >= 300:
                    raise RecordError(
                        RecordErrorKind.REJECTED,
                        f"Subject lookup rejected (HTTP {response.status})",
                        status_code=response.status,
                    )
                rows = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise RecordError(RecordErrorKind.UNREACHABLE, f"Record store unreachable: {e}") from e

        if not rows:
            raise RecordError(RecordErrorKind.NOT_FOUND, f"No subject with id {subject_id}")
        subject = SubjectInfo.from_row(rows[0])
        logger.info("Loaded subject %s (age %s, %s)", subject.subject_id, subject.age_years, subject.gender)
        return subject

    async def upload_image(self, subject_id: str, image: bytes, extension: str = "jpg") -> str:
        path = f"{subject_id}/{subject_id}-{int(time.time() * 1000)}.{extension}"
        url = f"{self._base_url}/storage/v1/object/{self._image_bucket}/{path}"
        headers = self._headers(**{"Content-Type": f"image/{extension}", "x-upsert": "true"})
        try:
            async with self._ensure_session().post(url, data=image, headers=headers) as response:
                if response.status >= 300:
                    raise RecordError(
                        RecordErrorKind.REJECTED,
                        f"Image upload rejected (HTTP {response.status})",
                        status_code=response.status,
                    )
        except aiohttp.ClientError as e:
            raise RecordError(RecordErrorKind.UNREACHABLE, f"Image upload failed: {e}") from e
        return self.public_image_url(path)

    async def save_result(
        self, subject: SubjectInfo, result: AnalysisResult, examined_on: date
    ) -> SavedRecord:
        image_url: Optional[str] = None
        if result.annotated_image:
            try:
                image_url = await self.upload_image(
                    subject.subject_id, result.annotated_image, result.image_format
                )
            except RecordError as e:
                # The measurement row is still worth keeping without its picture
                logger.warning("Image upload failed for %s, saving without image: %s", subject.subject_id, e)

        payload = {
            "nik": subject.subject_id,
            "tinggi": result.height_cm,
            "berat": result.weight_kg,
            "status": result.nutrition_status.value,
            "image": image_url,
            "tanggal_pemeriksaan": examined_on.isoformat(),
        }
        url = f"{self._base_url}/rest/v1/{self._results_table}"
        headers = self._headers(Prefer="resolution=merge-duplicates,return=minimal")
        try:
            async with self._ensure_session().post(
                url,
                params={"on_conflict": _UPSERT_CONFLICT_KEY},
                json=payload,
                headers=headers,
            ) as response:
                if response.status >= 300:
                    raise RecordError(
                        RecordErrorKind.REJECTED,
                        f"Saving result rejected (HTTP {response.status})",
                        status_code=response.status,
                    )
        except aiohttp.ClientError as e:
            raise RecordError(RecordErrorKind.UNREACHABLE, f"Record store unreachable: {e}") from e

        logger.info("Saved result for %s on %s", subject.subject_id, examined_on.isoformat())
        return SavedRecord(subject.subject_id, examined_on, image_url)


__all__ = [
    "SubjectInfo",
    "SavedRecord",
    "SubjectDirectory",
    "ResultStore",
    "RestRecordStore",
]
