import asyncio
import threading
import unittest
from types import SimpleNamespace
from unittest import mock

from kubernetes.client.rest import ApiException

from src.common.workload import WorkloadIdentity
from src.sweeper.events import Applied, Deleted, Restarted
from src.sweeper.watch import PodWatchSource


def _pod(name):
    return {
        "metadata": {"name": name, "namespace": "default", "annotations": {"linkerd.io/inject": "enabled"}},
        "status": {"podIP": "10.42.0.9"},
    }


class FakeCoreApi:
    def __init__(self, *listings) -> None:
        self.listings = list(listings)
        self.list_calls = []

    def list_pod_for_all_namespaces(self, **kwargs):
        self.list_calls.append(kwargs)
        result = self.listings.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _listing(version, *pods):
    return SimpleNamespace(metadata=SimpleNamespace(resource_version=version), items=list(pods))


def _stream(*items):
    for item in items:
        if isinstance(item, Exception):
            raise item
        yield item


class FakeWatchFactory:
    """Hands out one scripted stream per ``watch.Watch()`` call."""

    def __init__(self, *streams) -> None:
        self.streams = list(streams)
        self.stream_kwargs = []
        self.stopped = 0

    def __call__(self):
        factory = self

        class _Watch:
            def stream(self, func, **kwargs):
                factory.stream_kwargs.append(kwargs)
                return factory.streams.pop(0)

            def stop(self):
                factory.stopped += 1

        return _Watch()


async def _collect(source):
    return [event async for event in source.events()]


class PodWatchSourceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.sleeps = []

    async def _sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def _source(self, core_api):
        return PodWatchSource(core_api, "extensions.linkerd.io/sweep-sidecar=enabled", sleep=self._sleep)

    async def test_list_then_watch(self) -> None:
        core = FakeCoreApi(_listing("100", _pod("a")))
        watches = FakeWatchFactory(
            _stream({"type": "ADDED", "object": _pod("b")}, {"type": "DELETED", "object": _pod("a")}),
            _stream(ApiException(status=401)),
        )
        with mock.patch("src.sweeper.watch.watch.Watch", watches), self.assertLogs(
            "src.sweeper.watch", level="ERROR"
        ):
            events = await _collect(self._source(core))

        self.assertEqual(len(events), 3)
        self.assertIsInstance(events[0], Restarted)
        self.assertEqual(events[0].pods[0]["metadata"]["name"], "a")
        self.assertEqual(events[1], Applied(_pod("b")))
        self.assertEqual(events[2], Deleted(WorkloadIdentity("default", "a")))
        self.assertEqual(
            core.list_calls,
            [{"label_selector": "extensions.linkerd.io/sweep-sidecar=enabled", "_request_timeout": 5.0}],
        )
        self.assertEqual(watches.stream_kwargs[0]["resource_version"], "100")
        self.assertEqual(watches.stopped, 2)

    async def test_expired_resource_version_relists(self) -> None:
        core = FakeCoreApi(_listing("100", _pod("a")), _listing("250"))
        watches = FakeWatchFactory(_stream(ApiException(status=410)), _stream(ApiException(status=403)))
        with mock.patch("src.sweeper.watch.watch.Watch", watches), self.assertLogs("src.sweeper.watch"):
            events = await _collect(self._source(core))

        self.assertEqual([type(event) for event in events], [Restarted, Restarted])
        self.assertEqual(events[1].pods, ())
        self.assertEqual(len(core.list_calls), 2)
        self.assertEqual(watches.stream_kwargs[1]["resource_version"], "250")
        self.assertEqual(self.sleeps, [])

    async def test_list_denied_ends_stream(self) -> None:
        core = FakeCoreApi(ApiException(status=403))
        with self.assertLogs("src.sweeper.watch", level="ERROR"):
            events = await _collect(self._source(core))
        self.assertEqual(events, [])

    async def test_transient_errors_back_off(self) -> None:
        core = FakeCoreApi(ApiException(status=500), _listing("7"))
        watches = FakeWatchFactory(_stream(ApiException(status=500)), _stream(ApiException(status=401)))
        with mock.patch("src.sweeper.watch.watch.Watch", watches), self.assertLogs("src.sweeper.watch"):
            events = await _collect(self._source(core))

        self.assertEqual([type(event) for event in events], [Restarted])
        self.assertEqual(len(self.sleeps), 2)
        self.assertTrue(0.5 <= self.sleeps[0] <= 1.5)
        self.assertTrue(1.0 <= self.sleeps[1] <= 3.0)

    async def test_stop_interrupts_blocked_watch(self) -> None:
        release = threading.Event()
        self.addCleanup(release.set)

        def idle_stream():
            yield {"type": "ADDED", "object": _pod("b")}
            release.wait(5)

        core = FakeCoreApi(_listing("1"))
        source = self._source(core)
        with mock.patch("src.sweeper.watch.watch.Watch", FakeWatchFactory(idle_stream())):
            events = source.events()
            self.assertIsInstance(await events.__anext__(), Restarted)
            self.assertIsInstance(await events.__anext__(), Applied)
            pending = asyncio.ensure_future(events.__anext__())
            await asyncio.sleep(0.05)
            self.assertFalse(pending.done())

            source.stop()
            with self.assertRaises(StopAsyncIteration):
                await asyncio.wait_for(pending, timeout=1)

    async def test_stop_closes_streaming_response(self) -> None:
        response = mock.Mock()

        class StreamingCoreApi:
            def list_pod_for_all_namespaces(self, **kwargs):
                """:return: V1PodList"""
                return response

        source = PodWatchSource(StreamingCoreApi(), "app=batch")
        call = source._watch_call()
        self.assertEqual(call.__doc__, ":return: V1PodList")
        self.assertIs(call(watch=True, _preload_content=False), response)

        source.stop()
        response.shutdown.assert_called_once_with()
        response.close.assert_called_once_with()

    async def test_stop_ends_stream(self) -> None:
        core = FakeCoreApi(_listing("1"))
        source = self._source(core)
        source.stop()
        self.assertEqual(await _collect(source), [])
        self.assertEqual(core.list_calls, [])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
