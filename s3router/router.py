"""Route S3 operations between a primary and a secondary store."""

from __future__ import annotations

import contextlib
import io
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional, Protocol, Tuple, TypeVar, Union

from .config import Action, ActionName, Config

__all__ = [
    "Store",
    "RoutingError",
    "Router",
    "do_serial",
    "do_parallel",
    "dispatch",
    "drain_body",
    "tee_body",
]

I = TypeVar("I")
T = TypeVar("T")

Operation = Callable[["Store", I], T]
Body = Union[bytes, bytearray, memoryview, io.IOBase, Any]

DEFAULT_MAX_BUFFER_BYTES = 256 << 20
_CHUNK_SIZE = 64 << 10
_PIPE_DEPTH = 4
_POLL_SECONDS = 0.05
_EOF = object()


class Store(Protocol):
    """An S3-compatible storage backend with keyword-argument operations."""

    def get_object(self, **kwargs: Any) -> Any: ...

    def put_object(self, **kwargs: Any) -> Any: ...

    def head_object(self, **kwargs: Any) -> Any: ...

    def delete_object(self, **kwargs: Any) -> Any: ...

    def delete_objects(self, **kwargs: Any) -> Any: ...

    def list_objects_v2(self, **kwargs: Any) -> Any: ...

    def create_multipart_upload(self, **kwargs: Any) -> Any: ...

    def upload_part(self, **kwargs: Any) -> Any: ...

    def complete_multipart_upload(self, **kwargs: Any) -> Any: ...

    def list_parts(self, **kwargs: Any) -> Any: ...

    def abort_multipart_upload(self, **kwargs: Any) -> Any: ...


class RoutingError(Exception):
    """Raised when a request cannot be routed."""


def do_serial(
    op: Callable[[Any, I], T],
    primary_input: I,
    secondary_input: I,
    primary: Any,
    secondary: Any,
) -> T:
    """Run ``op`` on the primary store, and on the secondary if that fails."""
    try:
        return op(primary, primary_input)
    except Exception:
        return op(secondary, secondary_input)


def do_parallel(
    strict: bool,
    op: Callable[[Any, I], T],
    primary_input: I,
    secondary_input: I,
    primary: Any,
    secondary: Any,
) -> T:
    """Run ``op`` on both stores.

    When ``strict``, both run concurrently and both must succeed; the
    primary's result is returned. Otherwise the secondary call is fired in
    the background and its outcome is ignored.
    """
    if strict:
        with ThreadPoolExecutor(max_workers=2) as pool:
            first = pool.submit(op, primary, primary_input)
            second = pool.submit(op, secondary, secondary_input)
            first_error = first.exception()
            second_error = second.exception()
        if first_error is not None:
            raise first_error
        if second_error is not None:
            raise second_error
        return first.result()

    def _background() -> None:
        with contextlib.suppress(Exception):
            op(secondary, secondary_input)

    try:
        return op(primary, primary_input)
    finally:
        threading.Thread(target=_background, daemon=True).start()


def dispatch(
    action: ActionName,
    op: Callable[[Any, I], T],
    primary_input: I,
    secondary_input: I,
    primary: Any,
    secondary: Any,
) -> T:
    """Execute ``op`` against the stores as ``action`` prescribes."""
    if action == Action.SECONDARY:
        return op(secondary, secondary_input)
    if action == Action.FALLBACK:
        return do_serial(op, primary_input, secondary_input, primary, secondary)
    if action == Action.BEST_EFFORT:
        return do_parallel(False, op, primary_input, secondary_input, primary, secondary)
    if action == Action.MIRROR:
        return do_parallel(True, op, primary_input, secondary_input, primary, secondary)
    # Primary, and anything unknown.
    return op(primary, primary_input)


def _as_reader(body: Body) -> Any:
    if isinstance(body, (bytes, bytearray, memoryview)):
        return io.BytesIO(bytes(body))
    return body


def drain_body(body: Body) -> Tuple[io.BytesIO, io.BytesIO]:
    """Read the whole body into memory and return two independent readers."""
    data = bytes(_as_reader(body).read())
    return io.BytesIO(data), io.BytesIO(data)


class _PipeReader(io.RawIOBase):
    """Read end of a bounded in-memory pipe fed by a copying thread."""

    def __init__(self) -> None:
        super().__init__()
        self._chunks: "queue.Queue[Any]" = queue.Queue(maxsize=_PIPE_DEPTH)
        self._buffer = b""
        self._done = False
        self._error: Optional[BaseException] = None
        self._reader_closed = threading.Event()

    def readable(self) -> bool:
        return True

    def readinto(self, target: Any) -> int:
        if not self._buffer and not self._done:
            item = self._chunks.get()
            if item is _EOF:
                self._done = True
            elif isinstance(item, BaseException):
                self._done = True
                self._error = item
            else:
                self._buffer = item
        if not self._buffer:
            if self._error is not None:
                raise self._error
            return 0
        count = min(len(target), len(self._buffer))
        target[:count] = self._buffer[:count]
        self._buffer = self._buffer[count:]
        return count

    def close(self) -> None:
        self._reader_closed.set()
        super().close()

    def _put(self, item: Any) -> bool:
        while not self._reader_closed.is_set():
            try:
                self._chunks.put(item, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def feed(self, chunk: bytes) -> None:
        if not self._put(chunk):
            raise BrokenPipeError("read end of pipe is closed")

    def finish(self, error: Optional[BaseException] = None) -> None:
        self._put(_EOF if error is None else error)


def tee_body(body: Body) -> Tuple[io.RawIOBase, io.RawIOBase]:
    """Stream the body into two readers without buffering it whole.

    Both readers must be consumed concurrently; a read error on the source
    is raised by both readers once they reach it.
    """
    source = _as_reader(body)
    pipes = (_PipeReader(), _PipeReader())

    def _copy() -> None:
        error: Optional[BaseException] = None
        try:
            while True:
                chunk = source.read(_CHUNK_SIZE)
                if not chunk:
                    break
                for pipe in pipes:
                    pipe.feed(bytes(chunk))
        except Exception as exc:
            error = exc
        for pipe in pipes:
            pipe.finish(error)

    threading.Thread(target=_copy, daemon=True).start()
    return pipes


class Router:
    """A store that routes each request to a primary and/or secondary store."""

    def __init__(
        self,
        config: Config,
        primary: Any,
        secondary: Any,
        *,
        max_buffer_bytes: int = DEFAULT_MAX_BUFFER_BYTES,
    ) -> None:
        self.config = config
        self.primary = primary
        self.secondary = secondary
        self.max_buffer_bytes = max_buffer_bytes

    def _route(self, op: str, bucket: str, key: str) -> ActionName:
        if not self.config.is_logical_bucket(bucket):
            raise RoutingError(f'{op}: bucket "{bucket}" is not configured')
        _, action = self.config.lookup(bucket, key, op)
        return action

    def _prepare(
        self, op: str, params: dict, *, keyed: bool = True
    ) -> Tuple[ActionName, dict, dict]:
        bucket = params.get("Bucket") or ""
        key = (params.get("Key") or "") if keyed else ""
        action = self._route(op, bucket, key)
        primary_bucket, secondary_bucket = self.config.physical_buckets(bucket)
        return (
            action,
            {**params, "Bucket": primary_bucket},
            {**params, "Bucket": secondary_bucket},
        )

    def _run(
        self,
        op: str,
        call: Callable[[Any, dict], Any],
        params: dict,
        *,
        keyed: bool = True,
    ) -> Any:
        action, primary_in, secondary_in = self._prepare(op, params, keyed=keyed)
        return dispatch(action, call, primary_in, secondary_in, self.primary, self.secondary)

    def get_object(self, **kwargs: Any) -> Any:
        return self._run("GetObject", lambda st, p: st.get_object(**p), kwargs)

    def put_object(self, **kwargs: Any) -> Any:
        op = "PutObject"
        action, primary_in, secondary_in = self._prepare(op, kwargs)
        body = kwargs.get("Body")
        if action == Action.MIRROR and body is not None:
            length = kwargs.get("ContentLength")
            try:
                # Without a known length the body may be arbitrarily large.
                if length is None or length >= self.max_buffer_bytes:
                    first, second = tee_body(body)
                else:
                    first, second = drain_body(body)
            except Exception as exc:
                raise RoutingError(f"{op}: failed to split body for mirror: {exc}") from exc
            primary_in["Body"] = first
            secondary_in["Body"] = second
        return dispatch(
            action,
            lambda st, p: st.put_object(**p),
            primary_in,
            secondary_in,
            self.primary,
            self.secondary,
        )

    def head_object(self, **kwargs: Any) -> Any:
        return self._run("HeadObject", lambda st, p: st.head_object(**p), kwargs)

    def delete_object(self, **kwargs: Any) -> Any:
        return self._run("DeleteObject", lambda st, p: st.delete_object(**p), kwargs)

    def delete_objects(self, **kwargs: Any) -> Any:
        return self._run(
            "DeleteObjects", lambda st, p: st.delete_objects(**p), kwargs, keyed=False
        )

    def list_objects_v2(self, **kwargs: Any) -> Any:
        return self._run(
            "ListObjectsV2", lambda st, p: st.list_objects_v2(**p), kwargs, keyed=False
        )

    def create_multipart_upload(self, **kwargs: Any) -> Any:
        return self._run(
            "CreateMultipartUpload", lambda st, p: st.create_multipart_upload(**p), kwargs
        )

    def upload_part(self, **kwargs: Any) -> Any:
        return self._run("UploadPart", lambda st, p: st.upload_part(**p), kwargs)

    def complete_multipart_upload(self, **kwargs: Any) -> Any:
        return self._run(
            "CompleteMultipartUpload",
            lambda st, p: st.complete_multipart_upload(**p),
            kwargs,
        )

    def list_parts(self, **kwargs: Any) -> Any:
        return self._run("ListParts", lambda st, p: st.list_parts(**p), kwargs)

    def abort_multipart_upload(self, **kwargs: Any) -> Any:
        return self._run(
            "AbortMultipartUpload", lambda st, p: st.abort_multipart_upload(**p), kwargs
        )