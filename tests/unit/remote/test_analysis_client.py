"""Unit tests for AnalysisClient against a local aiohttp server."""

import pytest
from aiohttp import web

from anthro_kiosk.core.errors import AnalysisError, AnalysisErrorKind
from anthro_kiosk.remote import AnalysisClient

JPEG = b"\xff\xd8\xff\xe0fake-jpeg"


def _capture_app(received: dict, *, path: str = "/capture", status: int = 200, body=None) -> web.Application:
    async def handle(request: web.Request) -> web.Response:
        reader = await request.multipart()
        part = await reader.next()
        received["field"] = part.name
        received["filename"] = part.filename
        received["content_type"] = part.headers.get("Content-Type")
        received["data"] = await part.read()
        received["query"] = dict(request.query)
        if body is not None:
            return web.Response(status=status, text=body)
        return web.json_response(
            {"height": 99.0, "weight": 14.5, "status": [-0.4, "Normal"], "image": "", "message": "ok"},
            status=status,
        )

    app = web.Application()
    app.router.add_post(path, handle)
    return app


class TestAnalyze:

    @pytest.mark.asyncio
    async def test_posts_multipart_with_query(self, serve):
        received = {}
        async with serve(_capture_app(received)) as base_url:
            async with AnalysisClient(base_url) as client:
                payload = await client.analyze(JPEG, gender="P", age=4)

        assert payload["height"] == 99.0
        assert received["field"] == "file"
        assert received["filename"] == "capture.jpg"
        assert received["content_type"] == "image/jpeg"
        assert received["data"] == JPEG
        assert received["query"] == {"gender": "P", "age": "4"}

    @pytest.mark.asyncio
    async def test_configurable_capture_path(self, serve):
        received = {}
        async with serve(_capture_app(received, path="/captureweb")) as base_url:
            async with AnalysisClient(base_url, capture_path="/captureweb") as client:
                await client.analyze(JPEG, gender="L", age=2.5)

        assert received["query"]["age"] == "2.5"

    @pytest.mark.asyncio
    async def test_non_2xx_is_service_rejected(self, serve):
        async with serve(_capture_app({}, status=422)) as base_url:
            async with AnalysisClient(base_url) as client:
                with pytest.raises(AnalysisError) as exc_info:
                    await client.analyze(JPEG, gender="L", age=4)

        assert exc_info.value.kind is AnalysisErrorKind.SERVICE_REJECTED
        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_non_json_body_is_malformed(self, serve):
        async with serve(_capture_app({}, body="<html>oops</html>")) as base_url:
            async with AnalysisClient(base_url) as client:
                with pytest.raises(AnalysisError) as exc_info:
                    await client.analyze(JPEG, gender="L", age=4)

        assert exc_info.value.kind is AnalysisErrorKind.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_connection_refused_is_unreachable(self, serve):
        async with serve(web.Application()) as base_url:
            pass

        async with AnalysisClient(base_url) as client:
            with pytest.raises(AnalysisError) as exc_info:
                await client.analyze(JPEG, gender="L", age=4)

        assert exc_info.value.kind is AnalysisErrorKind.UNREACHABLE


class TestCalibrate:

    @pytest.mark.asyncio
    async def test_posts_aruco_image(self, serve):
        received = {}

        async def handle(request):
            reader = await request.multipart()
            part = await reader.next()
            received["filename"] = part.filename
            received["data"] = await part.read()
            return web.json_response({"result": 0.87})

        app = web.Application()
        app.router.add_post("/calibrate/aruco", handle)
        async with serve(app) as base_url:
            async with AnalysisClient(base_url) as client:
                payload = await client.calibrate(JPEG)

        assert payload == {"result": 0.87}
        assert received == {"filename": "aruco.jpg", "data": JPEG}

    @pytest.mark.asyncio
    async def test_http_500(self, serve):
        async def handle(request):
            return web.Response(status=500, text="marker not found")

        app = web.Application()
        app.router.add_post("/calibrate/aruco", handle)
        async with serve(app) as base_url:
            async with AnalysisClient(base_url) as client:
                with pytest.raises(AnalysisError) as exc_info:
                    await client.calibrate(JPEG)

        assert exc_info.value.status_code == 500
