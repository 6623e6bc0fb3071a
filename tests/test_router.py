import io
import threading

import pytest

from s3router.config import Action, load
from s3router.router import (
    Router,
    RoutingError,
    dispatch,
    do_parallel,
    do_serial,
    drain_body,
    tee_body,
)


class _Client:
    def __init__(self, name):
        self.name = name


PRIMARY = _Client("primary")
SECONDARY = _Client("secondary")


def op_string(err_on=None, err=None):
    def op(store, _input):
        if store is err_on:
            raise err
        if store is PRIMARY:
            return "primary"
        return "secondary"

    return op


def test_do_serial_fallback():
    out = do_serial(op_string(PRIMARY, EOFError()), "", "", PRIMARY, SECONDARY)
    assert out == "secondary"


def test_do_serial_primary_success_skips_secondary():
    calls = []

    def op(store, _input):
        calls.append(store)
        return store.name

    assert do_serial(op, "", "", PRIMARY, SECONDARY) == "primary"
    assert calls == [PRIMARY]


def test_do_serial_both_fail_raises_secondary_error():
    def op(store, _input):
        raise KeyError(store.name)

    with pytest.raises(KeyError, match="secondary"):
        do_serial(op, "", "", PRIMARY, SECONDARY)


def test_do_parallel_mirror_strict_secondary_error():
    with pytest.raises(EOFError):
        do_parallel(True, op_string(SECONDARY, EOFError("unexpected")), "", "", PRIMARY, SECONDARY)


def test_do_parallel_mirror_strict_primary_error_wins():
    def op(store, _input):
        raise ValueError(store.name)

    with pytest.raises(ValueError, match="primary"):
        do_parallel(True, op, "", "", PRIMARY, SECONDARY)


def test_do_parallel_best_effort():
    seen = []
    done = threading.Event()

    def op(store, _input):
        seen.append(store.name)
        if store is SECONDARY:
            done.set()
            return "secondary"
        return "primary"

    out = do_parallel(False, op, "", "", PRIMARY, SECONDARY)
    assert out == "primary"
    assert done.wait(5)
    assert sorted(seen) == ["primary", "secondary"]


def test_do_parallel_best_effort_ignores_secondary_error():
    done = threading.Event()

    def op(store, _input):
        if store is SECONDARY:
            done.set()
            raise RuntimeError("boom")
        return "primary"

    assert do_parallel(False, op, "", "", PRIMARY, SECONDARY) == "primary"
    assert done.wait(5)


@pytest.mark.parametrize(
    "action, expected",
    [
        (Action.PRIMARY, "primary"),
        (Action.SECONDARY, "secondary"),
        (Action.FALLBACK, "secondary"),
        (Action.BEST_EFFORT, "primary"),
        (Action.MIRROR, "primary"),
        ("unknown", "primary"),
    ],
)
def test_dispatch_selects_correct_client(action, expected):
    op = op_string()
    if action == Action.FALLBACK:
        op = op_string(PRIMARY, EOFError())
    assert dispatch(action, op, "", "", PRIMARY, SECONDARY) == expected


def test_dispatch_passes_matching_inputs():
    out = dispatch(Action.MIRROR, lambda st, value: (st.name, value), "a", "b", PRIMARY, SECONDARY)
    assert out == ("primary", "a")


def test_drain_body():
    want = "hello‑world".encode()
    r1, r2 = drain_body(io.BytesIO(want))
    assert r1.read() == want
    assert r2.read() == want


def test_drain_body_accepts_bytes():
    r1, r2 = drain_body(b"abc")
    assert (r1.read(), r2.read()) == (b"abc", b"abc")


def _read_both(r1, r2):
    results = {}

    def reader(name, stream):
        try:
            results[name] = stream.read()
        except Exception as exc:
            results[name] = exc

    threads = [
        threading.Thread(target=reader, args=("a", r1)),
        threading.Thread(target=reader, args=("b", r2)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)
    return results


def test_tee_body():
    want = "stream‑content".encode()
    r1, r2 = tee_body(io.BytesIO(want))
    results = _read_both(r1, r2)
    assert results == {"a": want, "b": want}


def test_tee_body_large_stream():
    want = bytes(range(256)) * 2000
    r1, r2 = tee_body(want)
    results = _read_both(r1, r2)
    assert results["a"] == want
    assert results["b"] == want


def test_tee_body_propagates_read_error():
    class Broken:
        def read(self, _size):
            raise OSError("disk gone")

    r1, r2 = tee_body(Broken())
    results = _read_both(r1, r2)
    assert sorted(results) == ["a", "b"]
    for name in ("a", "b"):
        error = results[name]
        assert isinstance(error, OSError)
        assert "disk gone" in str(error)


CONFIG_YAML = """
buckets:
  photos:
    primary: photos-a
    secondary: photos-b
rules:
  - bucket: photos
    prefix:
      "raw/":
        PutObject: mirror
        GetObject: fallback
        "*": fallback
      "processed/":
        "*": secondary
      "*":
        "*": primary
"""


class FakeStore:
    def __init__(self, name, fail=False):
        self.name = name
        self.fail = fail
        self.calls = []

    def _handle(self, op, params):
        if "Body" in params and hasattr(params["Body"], "read"):
            params = {**params, "Body": params["Body"].read()}
        self.calls.append((op, params))
        if self.fail:
            raise RuntimeError(f"{self.name} failed")
        return {"store": self.name, "op": op}

    def get_object(self, **kw):
        return self._handle("get_object", kw)

    def put_object(self, **kw):
        return self._handle("put_object", kw)

    def head_object(self, **kw):
        return self._handle("head_object", kw)

    def delete_object(self, **kw):
        return self._handle("delete_object", kw)

    def delete_objects(self, **kw):
        return self._handle("delete_objects", kw)

    def list_objects_v2(self, **kw):
        return self._handle("list_objects_v2", kw)

    def create_multipart_upload(self, **kw):
        return self._handle("create_multipart_upload", kw)

    def upload_part(self, **kw):
        return self._handle("upload_part", kw)

    def complete_multipart_upload(self, **kw):
        return self._handle("complete_multipart_upload", kw)

    def list_parts(self, **kw):
        return self._handle("list_parts", kw)

    def abort_multipart_upload(self, **kw):
        return self._handle("abort_multipart_upload", kw)


def make_router(primary_fail=False, **options):
    primary = FakeStore("primary", fail=primary_fail)
    secondary = FakeStore("secondary")
    router = Router(load(CONFIG_YAML), primary, secondary, **options)
    return router, primary, secondary


def test_router_primary_rewrites_bucket():
    router, primary, secondary = make_router()
    params = {"Bucket": "photos", "Key": "other/x"}
    out = router.get_object(**params)
    assert out == {"store": "primary", "op": "get_object"}
    assert primary.calls == [("get_object", {"Bucket": "photos-a", "Key": "other/x"})]
    assert secondary.calls == []
    assert params["Bucket"] == "photos"


def test_router_secondary_prefix():
    router, primary, secondary = make_router()
    out = router.head_object(Bucket="photos", Key="processed/x")
    assert out == {"store": "secondary", "op": "head_object"}
    assert secondary.calls == [("head_object", {"Bucket": "photos-b", "Key": "processed/x"})]
    assert primary.calls == []


def test_router_fallback_on_primary_failure():
    router, primary, secondary = make_router(primary_fail=True)
    out = router.get_object(Bucket="photos", Key="raw/img")
    assert out["store"] == "secondary"
    assert len(primary.calls) == 1


def test_router_unconfigured_bucket():
    router, primary, _ = make_router()
    with pytest.raises(RoutingError, match='GetObject: bucket "videos" is not configured'):
        router.get_object(Bucket="videos", Key="a")
    assert primary.calls == []


def test_router_put_mirror_drained_body():
    router, primary, secondary = make_router()
    out = router.put_object(Bucket="photos", Key="raw/a", Body=b"data", ContentLength=4)
    assert out["store"] == "primary"
    assert primary.calls[0][1]["Body"] == b"data"
    assert primary.calls[0][1]["Bucket"] == "photos-a"
    assert secondary.calls[0][1]["Body"] == b"data"
    assert secondary.calls[0][1]["Bucket"] == "photos-b"


def test_router_put_mirror_streamed_body():
    router, primary, secondary = make_router()
    payload = b"x" * 300_000
    router.put_object(Bucket="photos", Key="raw/a", Body=io.BytesIO(payload))
    assert primary.calls[0][1]["Body"] == payload
    assert secondary.calls[0][1]["Body"] == payload


def test_router_put_mirror_over_buffer_limit_streams():
    router, primary, secondary = make_router(max_buffer_bytes=2)
    router.put_object(Bucket="photos", Key="raw/a", Body=b"data", ContentLength=4)
    assert primary.calls[0][1]["Body"] == b"data"
    assert secondary.calls[0][1]["Body"] == b"data"


def test_router_put_mirror_primary_failure_raises():
    router, _, secondary = make_router(primary_fail=True)
    with pytest.raises(RuntimeError, match="primary failed"):
        router.put_object(Bucket="photos", Key="raw/a", Body=b"data", ContentLength=4)
    assert secondary.calls[0][1]["Body"] == b"data"


@pytest.mark.parametrize("method", ["delete_objects", "list_objects_v2"])
def test_router_bucket_level_ops_ignore_key(method):
    router, primary, secondary = make_router()
    out = getattr(router, method)(Bucket="photos", Key="processed/x")
    assert out == {"store": "primary", "op": method}
    assert secondary.calls == []


@pytest.mark.parametrize(
    "method",
    [
        "delete_object",
        "create_multipart_upload",
        "upload_part",
        "complete_multipart_upload",
        "list_parts",
        "abort_multipart_upload",
    ],
)
def test_router_keyed_ops_route_by_prefix(method):
    router, primary, secondary = make_router()
    out = getattr(router, method)(Bucket="photos", Key="processed/y", UploadId="u1")
    assert out == {"store": "secondary", "op": method}
    assert secondary.calls == [
        (method, {"Bucket": "photos-b", "Key": "processed/y", "UploadId": "u1"})
    ]
    assert primary.calls == []


def test_router_multipart_unconfigured_bucket():
    router, _, _ = make_router()
    with pytest.raises(RoutingError, match="UploadPart"):
        router.upload_part(Bucket="nope", Key="k")