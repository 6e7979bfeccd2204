import logging

import pytest

from cache_connect.application.middleware import CacheConnect
from cache_connect.application.sink import CapturingSink
from cache_connect.domain.errors import DecodingError, EncodingError
from cache_connect.domain.frame import encode
from cache_connect.infrastructure.memory_store import FrameStore
from fakes import (
    BrokenSink,
    DictStore,
    FailingWriteStore,
    FakeRequest,
    RecordingSink,
    UnreachableStore,
)


pytestmark = [pytest.mark.unit]


class Downstream:
    """Records invocations and replays a fixed sequence of writes."""

    def __init__(self, *writes, content_type="text/plain", final=None, status=None):
        self.writes = writes
        self.content_type = content_type
        self.final = final
        self.status = status
        self.sinks = []

    @property
    def calls(self):
        return len(self.sinks)

    async def __call__(self, request, sink):
        self.sinks.append(sink)
        if self.status is not None:
            sink.set_status(self.status)
        if self.content_type:
            sink.headers["Content-Type"] = self.content_type
        for chunk in self.writes:
            await sink.write(chunk)
        await sink.complete(self.final)


async def _never_called(request, sink):
    raise AssertionError("downstream handler must not run on a cache hit")


def test_cache_control_uses_whole_seconds():
    assert CacheConnect(DictStore(ttl=60_000)).cache_control == "public, max-age=60, must-revalidate"
    assert CacheConnect(DictStore(ttl=1_999)).cache_control == "public, max-age=1, must-revalidate"
    assert CacheConnect(DictStore(ttl=0)).cache_control == "public, max-age=0, must-revalidate"


def test_ttl_is_read_from_store_at_construction():
    store = DictStore(ttl=5_000)
    connect = CacheConnect(store)
    store.ttl = 10_000

    assert connect.ttl == 5_000


def test_resolve_key_variants():
    request = FakeRequest(path_qs="/items?page=2")

    assert CacheConnect.resolve_key(None, request) == "/items?page=2"
    assert CacheConnect.resolve_key("", request) == "/items?page=2"
    assert CacheConnect.resolve_key("fixed", request) == "fixed"
    assert CacheConnect.resolve_key(lambda r: r.path_qs.upper(), request) == "/ITEMS?PAGE=2"
    assert CacheConnect.resolve_key(lambda r: "", request) == "/items?page=2"
    assert CacheConnect.resolve_key(lambda r: None, request) == "/items?page=2"


@pytest.mark.asyncio
async def test_miss_stores_frame_and_passes_response_through():
    store = DictStore()
    handler = CacheConnect(store).cache()
    downstream = Downstream(b"hello")
    sink = RecordingSink()

    await handler(FakeRequest("GET", "/foo"), sink, downstream)

    assert downstream.calls == 1
    assert isinstance(downstream.sinks[0], CapturingSink)
    assert sink.body == b"hello"
    assert sink.headers["Content-Type"] == "text/plain"
    assert sink.headers["Cache-Control"] == "public, max-age=60, must-revalidate"
    assert store.calls == [("/foo", 60_000)]
    assert len(store.data["/foo"]) == 16
    assert store.data["/foo"] == encode("text/plain", b"hello")


@pytest.mark.asyncio
async def test_miss_with_body_sent_on_completion():
    store = DictStore()
    handler = CacheConnect(store).cache()
    sink = RecordingSink()

    await handler(FakeRequest(), sink, Downstream(final=b"hello"))

    assert sink.body == b"hello"
    assert store.data["/foo"] == encode("text/plain", b"hello")


@pytest.mark.asyncio
async def test_hit_serves_stored_frame_without_downstream():
    store = DictStore()
    store.data["/foo"] = encode("text/plain", b"hello")
    handler = CacheConnect(store).cache()
    sink = RecordingSink()

    await handler(FakeRequest(), sink, _never_called)

    assert sink.body == b"hello"
    assert sink.completions == 1
    assert sink.headers["Content-Type"] == "text/plain"
    assert sink.headers["Cache-Control"] == "public, max-age=60, must-revalidate"


@pytest.mark.asyncio
async def test_second_request_is_served_from_cache():
    store = DictStore()
    handler = CacheConnect(store).cache()
    downstream = Downstream(b"hello")

    first = RecordingSink()
    await handler(FakeRequest(), first, downstream)
    second = RecordingSink()
    await handler(FakeRequest(), second, downstream)

    assert downstream.calls == 1
    assert first.body == second.body == b"hello"
    assert second.headers["Content-Type"] == "text/plain"


@pytest.mark.asyncio
async def test_hit_with_empty_content_type_sets_no_header():
    store = DictStore()
    store.data["/foo"] = encode("", b"raw")
    sink = RecordingSink()

    await CacheConnect(store).cache()(FakeRequest(), sink, _never_called)

    assert sink.body == b"raw"
    assert "Content-Type" not in sink.headers


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"])
async def test_non_get_passes_through_untouched(method):
    store = DictStore()
    handler = CacheConnect(store).cache()
    downstream = Downstream(b"created")
    sink = RecordingSink()

    await handler(FakeRequest(method, "/foo"), sink, downstream)

    assert downstream.sinks == [sink]
    assert sink.body == b"created"
    assert "Cache-Control" not in sink.headers
    assert store.calls == []


@pytest.mark.asyncio
async def test_multiple_writes_are_delivered_but_not_cached():
    store = DictStore()
    handler = CacheConnect(store).cache()
    sink = RecordingSink()

    await handler(FakeRequest(), sink, Downstream(b"ab", b"cd"))

    assert sink.body == b"abcd"
    assert store.populated == [("/foo", None)]
    assert "/foo" not in store.data


@pytest.mark.asyncio
async def test_error_status_is_not_cached():
    store = DictStore()
    handler = CacheConnect(store).cache()
    sink = RecordingSink()

    await handler(FakeRequest(), sink, Downstream(final=b"missing", status=404))

    assert sink.status == 404
    assert sink.body == b"missing"
    assert store.data == {}


@pytest.mark.asyncio
async def test_key_function_is_resolved_per_request():
    store = DictStore()
    handler = CacheConnect(store).cache(lambda request: "page:" + request.path_qs)

    await handler(FakeRequest(path_qs="/a"), RecordingSink(), Downstream(b"a"))
    await handler(FakeRequest(path_qs="/b"), RecordingSink(), Downstream(b"b"))

    assert [key for key, _ in store.calls] == ["page:/a", "page:/b"]
    assert set(store.data) == {"page:/a", "page:/b"}


@pytest.mark.asyncio
async def test_literal_key_is_shared_across_paths():
    store = DictStore()
    handler = CacheConnect(store).cache("home")
    downstream = Downstream(b"home page")

    await handler(FakeRequest(path_qs="/"), RecordingSink(), downstream)
    sink = RecordingSink()
    await handler(FakeRequest(path_qs="/index.html"), sink, downstream)

    assert downstream.calls == 1
    assert sink.body == b"home page"


@pytest.mark.asyncio
async def test_store_read_error_forwards_request(caplog):
    store = UnreachableStore()
    handler = CacheConnect(store).cache()
    downstream = Downstream(b"fresh")
    sink = RecordingSink()

    with caplog.at_level(logging.ERROR):
        await handler(FakeRequest(), sink, downstream)

    assert downstream.sinks == [sink]
    assert sink.body == b"fresh"
    assert sink.completions == 1
    assert "Cache error for key '/foo'" in caplog.text


@pytest.mark.asyncio
async def test_store_error_after_populate_does_not_rerun_downstream(caplog):
    store = FailingWriteStore()
    handler = CacheConnect(store).cache()
    downstream = Downstream(b"fresh")
    sink = RecordingSink()

    with caplog.at_level(logging.ERROR):
        await handler(FakeRequest(), sink, downstream)

    assert downstream.calls == 1
    assert sink.body == b"fresh"
    assert "Cache error" in caplog.text


@pytest.mark.asyncio
async def test_corrupt_frame_raises_decoding_error():
    store = DictStore()
    store.data["/foo"] = b"\x10text"

    with pytest.raises(DecodingError):
        await CacheConnect(store).cache()(FakeRequest(), RecordingSink(), _never_called)


@pytest.mark.asyncio
async def test_oversized_content_type_raises_encoding_error_after_delivery():
    store = DictStore()
    sink = RecordingSink()

    with pytest.raises(EncodingError):
        await CacheConnect(store).cache()(
            FakeRequest(), sink, Downstream(b"body", content_type="x" * 256)
        )

    assert sink.body == b"body"
    assert store.data == {}


@pytest.mark.asyncio
async def test_transport_error_propagates_unchanged():
    error = BrokenPipeError("client disconnected")

    with pytest.raises(BrokenPipeError) as exc_info:
        await CacheConnect(DictStore()).cache()(FakeRequest(), BrokenSink(error), Downstream(b"x"))

    assert exc_info.value is error


@pytest.mark.asyncio
async def test_debug_logger_traces_miss_and_hit(caplog):
    trace_logger = logging.getLogger("tests.cache_connect.trace")
    trace_logger.setLevel(logging.DEBUG)
    try:
        handler = CacheConnect(DictStore(), logger=trace_logger).cache()
        with caplog.at_level(logging.DEBUG, logger=trace_logger.name):
            await handler(FakeRequest(), RecordingSink(), Downstream(b"hello"))
            await handler(FakeRequest(), RecordingSink(), _never_called)
    finally:
        trace_logger.setLevel(logging.NOTSET)

    messages = [record.getMessage() for record in caplog.records if record.name == trace_logger.name]
    assert messages == ["cache check: /foo", "cache miss: /foo", "cache check: /foo", "cache hit: /foo"]


@pytest.mark.asyncio
async def test_debug_tracing_is_resolved_at_construction(caplog):
    quiet_logger = logging.getLogger("tests.cache_connect.quiet")
    quiet_logger.setLevel(logging.INFO)
    try:
        handler = CacheConnect(DictStore(), logger=quiet_logger).cache()
        quiet_logger.setLevel(logging.DEBUG)
        with caplog.at_level(logging.DEBUG, logger=quiet_logger.name):
            await handler(FakeRequest(), RecordingSink(), Downstream(b"hello"))
    finally:
        quiet_logger.setLevel(logging.NOTSET)

    assert not [record for record in caplog.records if record.name == quiet_logger.name]


@pytest.mark.asyncio
@pytest.mark.parametrize("id_spec", [lambda r: "", lambda r: None])
async def test_empty_key_from_callable_caches_under_url(id_spec):
    store = FrameStore(cleanup_interval=3600)
    handler = CacheConnect(store).cache(id_spec)
    try:
        await handler(FakeRequest("GET", "/foo"), RecordingSink(), Downstream(b"hello"))
        second = RecordingSink()
        await handler(FakeRequest("GET", "/foo"), second, _never_called)
    finally:
        store.stop()

    assert list(store.store) == ["/foo"]
    assert second.body == b"hello"
