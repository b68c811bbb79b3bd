import asyncio
import base64
import hashlib
import msgpack
import os
import socket
import tempfile
import threading
import unittest
from unittest import mock

import cv2
import numpy as np
from aiohttp import web

from capture import build_capture_request, create_capture_client
from core.config.settings import CaptureSettings, ConnectionInfo, OutputDirPolicy
from core.contracts import CaptureFailure, CaptureRequest, CaptureSuccess, FailureReason

SALT = "lM1GncleQOaCu9lT1yeUZhFYnqhsLLP1G5lAGo3ixaI="
CHALLENGE = "+IxH4CnCiqpX1rM9scsNynZzbOe4KhDeYcTNS3PDaeY="


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _auth_response(password: str, salt: str, challenge: str) -> str:
    secret = base64.b64encode(
        hashlib.sha256((password + salt).encode("utf-8")).digest()
    ).decode("ascii")
    return base64.b64encode(
        hashlib.sha256((secret + challenge).encode("utf-8")).digest()
    ).decode("ascii")


class FakeObsServer:
    """Minimal obs-websocket v5 host that writes real PNG files."""

    def __init__(self, *, password: str = "", sources=("Main",), write_files=True):
        self.password = password
        self.sources = set(sources)
        self.write_files = write_files
        self.hello_auth = None
        self.malformed_responses = False
        self.requests: list[dict] = []
        self.connections = 0
        self.port = 0
        self._runner: web.AppRunner | None = None

    async def start(self):
        app = web.Application()
        app.router.add_get("/", self._handle)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        self.port = _free_port()
        site = web.TCPSite(self._runner, "127.0.0.1", self.port)
        await site.start()

    async def stop(self):
        if self._runner is not None:
            await self._runner.cleanup()

    async def _handle(self, request):
        ws = web.WebSocketResponse(protocols=("obswebsocket.msgpack",))
        await ws.prepare(request)
        self.connections += 1
        hello = {"op": 0, "d": {"obsWebSocketVersion": "5.1.0", "rpcVersion": 1}}
        if self.hello_auth is not None:
            hello["d"]["authentication"] = self.hello_auth
        elif self.password:
            hello["d"]["authentication"] = {"challenge": CHALLENGE, "salt": SALT}
        await ws.send_bytes(msgpack.packb(hello))
        msg = await ws.receive()
        if msg.type != web.WSMsgType.BINARY:
            return ws
        identify = msgpack.unpackb(msg.data)
        expected = _auth_response(self.password, SALT, CHALLENGE)
        if self.password and identify["d"].get("authentication") != expected:
            await ws.close(code=4009, message=b"Authentication failed.")
            return ws
        await ws.send_bytes(msgpack.packb({"op": 2, "d": {"negotiatedRpcVersion": 1}}))
        async for msg in ws:
            req = msgpack.unpackb(msg.data)["d"]
            self.requests.append(req)
            if self.malformed_responses:
                await ws.send_bytes(msgpack.packb({"op": 7, "d": "not-an-object"}))
                continue
            status, data = self._answer(req["requestType"], req.get("requestData") or {})
            await ws.send_bytes(
                msgpack.packb(
                    {
                        "op": 7,
                        "d": {
                            "requestType": req["requestType"],
                            "requestId": req["requestId"],
                            "requestStatus": status,
                            "responseData": data,
                        },
                    }
                )
            )
        return ws

    def _answer(self, request_type: str, data: dict):
        ok = {"result": True, "code": 100}
        if request_type == "SaveSourceScreenshot":
            if data.get("sourceName") not in self.sources:
                return {"result": False, "code": 600, "comment": "No source was found"}, {}
            if self.write_files:
                w = int(data.get("imageWidth") or 1920)
                h = int(data.get("imageHeight") or 1080)
                cv2.imwrite(data["imageFilePath"], np.zeros((h, w, 3), dtype=np.uint8))
            return ok, {}
        if request_type == "GetSceneList":
            return ok, {"scenes": [{"sceneName": "Scene"}]}
        if request_type == "GetInputList":
            return ok, {"inputs": [{"inputName": "Mic", "inputKind": "pulse"}]}
        if request_type == "GetSceneItemList":
            return ok, {
                "sceneItems": [{"sourceName": "Main", "sourceType": "OBS_SOURCE_TYPE_INPUT"}]
            }
        return {"result": False, "code": 204, "comment": "unknown request"}, {}


class TestObsCapture(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.policy = OutputDirPolicy(data_dir=self._tmp.name)
        self.client = create_capture_client("obs", self.policy)
        self.server = FakeObsServer(password="secret")
        await self.server.start()
        self.info = ConnectionInfo(
            host="127.0.0.1",
            port=self.server.port,
            password="secret",
            connect_timeout_s=2.0,
            request_timeout_s=2.0,
        )

    async def asyncTearDown(self):
        await self.server.stop()
        self._tmp.cleanup()

    async def test_capture_writes_and_reads_back_snapshot(self):
        result = await self.client.capture(CaptureRequest.build("Main"), self.info)
        self.assertIsInstance(result, CaptureSuccess)
        self.assertEqual((result.width, result.height), (1280, 720))
        self.assertTrue(os.path.isfile(result.image_path))
        self.assertEqual(
            os.path.dirname(result.image_path),
            os.path.join(self._tmp.name, "screenshots"),
        )
        self.assertTrue(result.image_bytes.startswith(b"\x89PNG"))
        req = self.server.requests[-1]
        self.assertEqual(req["requestType"], "SaveSourceScreenshot")
        self.assertEqual(req["requestData"]["imageWidth"], 1280)
        self.assertEqual(req["requestData"]["imageHeight"], 720)
        self.assertEqual(self.client.open_sessions, 0)

    async def test_native_size_omits_dimensions(self):
        request = build_capture_request(CaptureSettings(source="Main", native_size=True))
        result = await self.client.capture(request, self.info)
        self.assertIsInstance(result, CaptureSuccess)
        self.assertEqual((result.width, result.height), (1920, 1080))
        data = self.server.requests[-1]["requestData"]
        self.assertNotIn("imageWidth", data)
        self.assertNotIn("imageHeight", data)

    async def test_unknown_source_is_capture_request_error(self):
        result = await self.client.capture(CaptureRequest.build("Nope"), self.info)
        self.assertIsInstance(result, CaptureFailure)
        self.assertEqual(result.reason, FailureReason.CAPTURE_REQUEST_ERROR)
        self.assertIn("No source was found", result.message)
        self.assertEqual(self.client.open_sessions, 0)

    async def test_missing_source_fails_after_connect(self):
        result = await self.client.capture(CaptureRequest.build(""), self.info)
        self.assertIsInstance(result, CaptureFailure)
        self.assertEqual(result.reason, FailureReason.CAPTURE_REQUEST_ERROR)
        self.assertEqual(self.server.connections, 1)
        self.assertEqual(self.server.requests, [])

    async def test_wrong_password_is_connection_error(self):
        info = ConnectionInfo(
            host="127.0.0.1", port=self.server.port, password="wrong", connect_timeout_s=2.0
        )
        result = await self.client.capture(CaptureRequest.build("Main"), info)
        self.assertIsInstance(result, CaptureFailure)
        self.assertEqual(result.reason, FailureReason.CONNECTION_ERROR)
        self.assertEqual(self.client.open_sessions, 0)

    async def test_unreachable_host_twice_releases_sessions(self):
        info = ConnectionInfo(host="127.0.0.1", port=_free_port(), connect_timeout_s=2.0)
        first = await self.client.capture(CaptureRequest.build("Main"), info)
        second = await self.client.capture(CaptureRequest.build("Main"), info)
        for result in (first, second):
            self.assertIsInstance(result, CaptureFailure)
            self.assertEqual(result.reason, FailureReason.CONNECTION_ERROR)
        self.assertEqual(self.client.open_sessions, 0)

    async def test_missing_file_after_request_is_persistence_error(self):
        self.server.write_files = False
        result = await self.client.capture(CaptureRequest.build("Main"), self.info)
        self.assertIsInstance(result, CaptureFailure)
        self.assertEqual(result.reason, FailureReason.PERSISTENCE_ERROR)

    async def test_list_sources(self):
        data = await self.client.list_sources(self.info)
        self.assertEqual(data["scenes"], [{"sceneName": "Scene"}])
        names = [s["name"] for s in data["sources"]]
        self.assertEqual(names, ["Main", "Mic"])
        self.assertEqual(self.client.open_sessions, 0)


class TestMalformedHost(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.client = create_capture_client(
            "obs", OutputDirPolicy(data_dir=self._tmp.name)
        )
        self.server = FakeObsServer()
        await self.server.start()
        self.info = ConnectionInfo(
            host="127.0.0.1",
            port=self.server.port,
            connect_timeout_s=1.0,
            request_timeout_s=1.0,
        )

    async def asyncTearDown(self):
        await self.server.stop()
        self._tmp.cleanup()

    async def test_non_object_authentication_is_failure(self):
        self.server.hello_auth = True
        result = await self.client.capture(CaptureRequest.build("Main"), self.info)
        self.assertIsInstance(result, CaptureFailure)
        self.assertEqual(self.client.open_sessions, 0)

    async def test_non_object_response_is_request_failure(self):
        self.server.malformed_responses = True
        result = await self.client.capture(CaptureRequest.build("Main"), self.info)
        self.assertIsInstance(result, CaptureFailure)
        self.assertEqual(result.reason, FailureReason.CAPTURE_REQUEST_ERROR)
        self.assertEqual(self.client.open_sessions, 0)


class TestCaptureErrorMapping(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.client = create_capture_client(
            "mock", OutputDirPolicy(data_dir=self._tmp.name)
        )

    async def asyncTearDown(self):
        self._tmp.cleanup()

    async def test_unexpected_exception_becomes_request_failure(self):
        with mock.patch.object(
            self.client, "_capture_to", side_effect=AttributeError("boom")
        ):
            result = await self.client.capture(CaptureRequest.build("Main"), ConnectionInfo())
        self.assertIsInstance(result, CaptureFailure)
        self.assertEqual(result.reason, FailureReason.CAPTURE_REQUEST_ERROR)
        self.assertIn("boom", result.message)

    async def test_read_back_runs_off_the_event_loop(self):
        from capture import base

        loop_thread = threading.get_ident()
        seen = []
        real_read_back = base.read_back_image

        def _read_back(path):
            seen.append(threading.get_ident())
            return real_read_back(path)

        with mock.patch.object(base, "read_back_image", side_effect=_read_back):
            result = await self.client.capture(CaptureRequest.build("Main"), ConnectionInfo())
        self.assertIsInstance(result, CaptureSuccess)
        self.assertEqual(len(seen), 1)
        self.assertNotEqual(seen[0], loop_thread)

    async def test_other_coroutines_progress_during_read_back(self):
        from capture import base

        real_read_back = base.read_back_image
        reading = threading.Event()
        release = threading.Event()
        released_by_loop = []

        def _slow_read_back(path):
            reading.set()
            released_by_loop.append(release.wait(2.0))
            return real_read_back(path)

        async def _ticker():
            ticks = 0
            while ticks < 3:
                if reading.is_set():
                    ticks += 1
                await asyncio.sleep(0.01)
            release.set()

        with mock.patch.object(base, "read_back_image", side_effect=_slow_read_back):
            result, _ = await asyncio.gather(
                self.client.capture(CaptureRequest.build("Main"), ConnectionInfo()),
                _ticker(),
            )
        self.assertIsInstance(result, CaptureSuccess)
        self.assertEqual(released_by_loop, [True])


if __name__ == "__main__":
    unittest.main()
