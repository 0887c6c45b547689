import asyncio
import json
import unittest
from unittest import mock

from backend_client import BackendResponse
from report_dispatch import DispatchMode, Failed, Redirected, ReportScreen, Rows, Sent
from report_errors import NetworkFailure
from report_query import FilterState, Query


class FakeBackend:
    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def url(self, path, query=None):
        return f"http://backend{path}?{query.encode()}" if query is not None else f"http://backend{path}"

    async def get(self, path, query=None, accept_json=False):
        self.calls.append((path, query, accept_json))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _rows(*rows):
    return BackendResponse(200, json.dumps(list(rows)))


class DispatchRouterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.query = Query([("deviceId", "1")])

    async def test_generate_replaces_rows(self):
        backend = FakeBackend([_rows({"deviceName": "a"}), _rows({"deviceName": "b"})])
        screen = ReportScreen(backend, "fuel")
        await screen.dispatch(self.query, DispatchMode.GENERATE)
        outcome = await screen.dispatch(self.query, DispatchMode.GENERATE)
        self.assertEqual(outcome, Rows([{"deviceName": "b"}]))
        self.assertEqual(screen.rows, [{"deviceName": "b"}])
        self.assertEqual(backend.calls[0], ("/api/reports/fuel", self.query, True))
        self.assertFalse(screen.loading)

    async def test_generate_surfaces_json_message(self):
        backend = FakeBackend([BackendResponse(400, '{"message":"bad range"}')])
        screen = ReportScreen(backend, "behavior")
        outcome = await screen.dispatch(self.query, "generate")
        self.assertEqual(outcome, Failed("bad range", 400))
        self.assertEqual(screen.error, "bad range")
        self.assertFalse(screen.loading)

    async def test_generate_surfaces_raw_text(self):
        backend = FakeBackend([BackendResponse(500, "oops")])
        screen = ReportScreen(backend, "behavior")
        outcome = await screen.dispatch(self.query, "generate")
        self.assertEqual(outcome.message, "oops")

    async def test_failure_keeps_previous_rows(self):
        backend = FakeBackend([_rows({"deviceName": "a"}), BackendResponse(500, "oops")])
        screen = ReportScreen(backend, "fuel")
        await screen.dispatch(self.query, "generate")
        await screen.dispatch(self.query, "generate")
        self.assertEqual(screen.rows, [{"deviceName": "a"}])

    async def test_loading_reset_after_forced_rejection(self):
        backend = FakeBackend([RuntimeError("connection reset")])
        screen = ReportScreen(backend, "fuel")
        with self.assertRaises(RuntimeError):
            await screen.dispatch(self.query, "generate")
        self.assertFalse(screen.loading)

    async def test_transport_failure_becomes_failed(self):
        backend = FakeBackend([NetworkFailure("timed out")])
        screen = ReportScreen(backend, "fuel")
        outcome = await screen.dispatch(self.query, "generate")
        self.assertEqual(outcome, Failed("timed out", None))
        self.assertFalse(screen.loading)

    async def test_loading_is_set_while_generating(self):
        seen = []
        screen = None

        class Recording(FakeBackend):
            async def get(self, path, query=None, accept_json=False):
                seen.append(screen.loading)
                return _rows()

        screen = ReportScreen(Recording(), "fuel")
        await screen.dispatch(self.query, "generate")
        self.assertEqual(seen, [True])
        self.assertFalse(screen.loading)

    async def test_non_list_payload_fails(self):
        backend = FakeBackend([BackendResponse(200, '{"rows": []}')])
        screen = ReportScreen(backend, "fuel")
        outcome = await screen.dispatch(self.query, "generate")
        self.assertIsInstance(outcome, Failed)

    async def test_empty_object_payload_fails(self):
        backend = FakeBackend([BackendResponse(200, "{}")])
        screen = ReportScreen(backend, "fuel")
        outcome = await screen.dispatch(self.query, "generate")
        self.assertIsInstance(outcome, Failed)
        self.assertEqual(screen.rows, [])

    async def test_empty_body_is_no_rows(self):
        backend = FakeBackend([BackendResponse(200, "")])
        outcome = await ReportScreen(backend, "fuel").dispatch(self.query, "generate")
        self.assertEqual(outcome, Rows([]))

    async def test_export_redirects_without_request(self):
        backend = FakeBackend()
        screen = ReportScreen(backend, "insurance")
        outcome = await screen.dispatch(self.query, DispatchMode.EXPORT)
        self.assertEqual(outcome, Redirected("http://backend/api/reports/insurance/xlsx?deviceId=1"))
        self.assertEqual(backend.calls, [])
        self.assertFalse(screen.loading)

    async def test_mail_success_and_failure(self):
        backend = FakeBackend([BackendResponse(200, ""), BackendResponse(503, "mail server down")])
        screen = ReportScreen(backend, "maintenance")
        self.assertEqual(await screen.dispatch(self.query, "mail"), Sent())
        self.assertEqual(backend.calls[0][0], "/api/reports/maintenance/mail")
        outcome = await screen.dispatch(self.query, "mail")
        self.assertEqual(outcome, Failed("mail server down", 503))
        self.assertEqual(screen.rows, [])

    async def test_mail_does_not_touch_loading(self):
        seen = []
        screen = None

        class Recording(FakeBackend):
            async def get(self, path, query=None, accept_json=False):
                seen.append(screen.loading)
                return BackendResponse(200, "")

        screen = ReportScreen(Recording(), "fuel")
        await screen.dispatch(self.query, "mail")
        self.assertEqual(seen, [False])

    async def test_submit_builds_query_from_filters(self):
        backend = FakeBackend([_rows()])
        screen = ReportScreen(backend, "behavior")
        await screen.submit(FilterState(device_ids=["d1"], group_ids=["g1", "g2"]), "generate")
        self.assertEqual(backend.calls[0][1].encode(), "deviceId=d1&groupId=g1")

    async def test_closed_screen_ignores_late_results(self):
        release = asyncio.Event()

        class Slow(FakeBackend):
            async def get(self, path, query=None, accept_json=False):
                await release.wait()
                return _rows({"deviceName": "late"})

        screen = ReportScreen(Slow(), "fuel")
        task = asyncio.ensure_future(screen.dispatch(self.query, "generate"))
        await asyncio.sleep(0)
        self.assertTrue(screen.loading)
        screen.close()
        release.set()
        outcome = await task
        self.assertEqual(outcome, Rows([{"deviceName": "late"}]))
        self.assertEqual(screen.rows, [])

    async def test_overlapping_generates_last_completion_wins(self):
        first_release = asyncio.Event()

        class Ordered(FakeBackend):
            async def get(self, path, query=None, accept_json=False):
                if query.get_all("deviceId") == ["1"]:
                    await first_release.wait()
                    return _rows({"deviceName": "first"})
                return _rows({"deviceName": "second"})

        screen = ReportScreen(Ordered(), "fuel")
        first = asyncio.ensure_future(screen.dispatch(Query([("deviceId", "1")]), "generate"))
        await asyncio.sleep(0)
        await screen.dispatch(Query([("deviceId", "2")]), "generate")
        first_release.set()
        await first
        self.assertEqual(screen.rows, [{"deviceName": "first"}])
        self.assertFalse(screen.loading)

    def test_unknown_mode(self):
        with self.assertRaises(ValueError):
            DispatchMode.parse("print")
        self.assertIs(DispatchMode.parse(None), DispatchMode.GENERATE)


class BackendClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_get_passes_repeated_params_and_accept_header(self):
        from backend_client import BackendClient
        from console_config import ConsoleConfig

        session = mock.Mock()
        session.headers = {}
        session.request.return_value = mock.Mock(status_code=200, text="[]")
        client = BackendClient(ConsoleConfig(backend_url="http://fleet", backend_token="t"), session=session)
        resp = await client.get("/api/reports/fuel", Query([("deviceId", "1"), ("deviceId", "2")]), accept_json=True)

        self.assertTrue(resp.ok)
        self.assertEqual(resp.json(), [])
        args, kwargs = session.request.call_args
        self.assertEqual(args, ("GET", "http://fleet/api/reports/fuel"))
        self.assertEqual(kwargs["params"], [("deviceId", "1"), ("deviceId", "2")])
        self.assertEqual(kwargs["headers"], {"Accept": "application/json"})
        self.assertEqual(session.headers["Authorization"], "Bearer t")

    async def test_transport_errors_raise_network_failure(self):
        import requests

        from backend_client import BackendClient
        from console_config import ConsoleConfig

        session = mock.Mock()
        session.headers = {}
        session.request.side_effect = requests.ConnectionError("refused")
        client = BackendClient(ConsoleConfig(backend_url="http://fleet"), session=session)
        with self.assertRaises(NetworkFailure):
            await client.get("/api/devices")

    async def test_schedule_report_links_devices_and_groups(self):
        from backend_client import BackendClient
        from console_config import ConsoleConfig

        session = mock.Mock()
        session.headers = {}
        session.request.side_effect = [
            mock.Mock(status_code=200, text='{"id": 12}'),
            mock.Mock(status_code=204, text=""),
            mock.Mock(status_code=204, text=""),
        ]
        client = BackendClient(ConsoleConfig(backend_url="http://fleet"), session=session)
        error = await client.schedule_report([1, 2], [5], {"type": "fuel", "attributes": {}})

        self.assertIsNone(error)
        calls = session.request.call_args_list
        self.assertEqual(calls[0].args, ("POST", "http://fleet/api/reports"))
        self.assertEqual(calls[1].kwargs["json"], [{"deviceId": 1, "reportId": 12}, {"deviceId": 2, "reportId": 12}])
        self.assertEqual(calls[2].kwargs["json"], [{"groupId": 5, "reportId": 12}])

    async def test_schedule_report_returns_backend_text(self):
        from backend_client import BackendClient
        from console_config import ConsoleConfig

        session = mock.Mock()
        session.headers = {}
        session.request.return_value = mock.Mock(status_code=400, text="Calendar required")
        client = BackendClient(ConsoleConfig(backend_url="http://fleet"), session=session)
        error = await client.schedule_report([1], [], {"type": "fuel"})
        self.assertEqual(error, "Calendar required")

    async def test_schedule_report_without_stored_id_is_an_error(self):
        from backend_client import BackendClient
        from console_config import ConsoleConfig

        for body in ("", "{}", "[]"):
            session = mock.Mock()
            session.headers = {}
            session.request.return_value = mock.Mock(status_code=200, text=body)
            client = BackendClient(ConsoleConfig(backend_url="http://fleet"), session=session)
            error = await client.schedule_report([1], [], {"type": "fuel"})
            self.assertEqual(error, "Scheduled report reply has no id")
            self.assertEqual(session.request.call_count, 1)

    async def test_schedule_report_with_non_json_reply_is_an_error(self):
        from backend_client import BackendClient
        from console_config import ConsoleConfig

        session = mock.Mock()
        session.headers = {}
        session.request.return_value = mock.Mock(status_code=200, text="<html>ok</html>")
        client = BackendClient(ConsoleConfig(backend_url="http://fleet"), session=session)
        error = await client.schedule_report([1], [], {"type": "fuel"})
        self.assertEqual(error, "Invalid scheduled report reply: <html>ok</html>")
        self.assertEqual(session.request.call_count, 1)


if __name__ == "__main__":
    unittest.main()
