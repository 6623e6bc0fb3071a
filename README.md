# s3router

`s3router` puts one S3-style interface in front of two object stores, a
primary and a secondary. A YAML file decides where each call goes, by
logical bucket, key prefix and operation name. A call can be routed as:

| action        | behaviour                                                                                   |
|---------------|---------------------------------------------------------------------------------------------|
| `primary`     | the primary store only                                                                      |
| `secondary`   | the secondary store only                                                                    |
| `fallback`    | the primary store first; if it raises, the secondary store, whose result or error is returned |
| `mirror`      | both stores at once; the primary's result is returned, and the call raises if either store raised (the primary's error first) |
| `best-effort` | the primary store's result or error is returned; the secondary store is called in a background thread and its outcome is ignored |

An action name that is not one of these routes the call to the primary store.

## Installation

```
pip install s3router
```

The only dependency is PyYAML. The package does not bring an S3 client of
its own; you pass in the two store objects.

## Configuration

```yaml
endpoints:
  primary: http://primary:9000
  secondary: http://secondary:9000

buckets:
  photos:
    primary: photos
    secondary: cf-photos

rules:
  - bucket: photos
    prefix:
      "raw/":
        PutObject: mirror
        DeleteObject: best-effort
        GetObject: fallback
        "*": fallback
      "processed/":
        "*": secondary
      "*":
        "*": primary
```

`s3router.config.load` reads such a document from a stream or a string and
returns a `Config` with `endpoints`, `buckets` (`BucketMapping` values) and
`rules` (`Rule` values). It raises `ConfigError` for malformed YAML, an empty
document or values of the wrong shape.

- Each logical bucket under `buckets` maps to one physical bucket on each
  store. A routed call for a bucket that is not listed raises `RoutingError`.
- Each prefix must have a `"*"` entry, the action for any operation that is
  not named. `load` raises `ConfigError` if it is missing.
- A prefix of `"*"` matches every key in the bucket. A rule whose bucket is
  `"*"` applies to every bucket.
- Rules are sorted by bucket name, then by prefix in descending
  lexicographic order, and the first rule that matches wins. If no rule
  matches, the call goes to the primary store.
- Endpoint keys `primary` and `secondary` become `Endpoint.PRIMARY` and
  `Endpoint.SECONDARY`; other keys are kept as plain strings. The router
  itself does not use the endpoints; they are there for building clients.

## Usage

```python
import boto3

from s3router.config import Endpoint, load
from s3router.router import Router

with open("router.yaml") as fh:
    cfg = load(fh)

primary = boto3.client("s3", endpoint_url=cfg.endpoints[Endpoint.PRIMARY])
secondary = boto3.client("s3", endpoint_url=cfg.endpoints[Endpoint.SECONDARY])

s3 = Router(cfg, primary, secondary)

s3.put_object(Bucket="photos", Key="raw/cat.jpg", Body=b"...", ContentLength=3)
obj = s3.get_object(Bucket="photos", Key="raw/cat.jpg")
```

Any object with these methods works as a store: `get_object`, `put_object`,
`head_object`, `delete_object`, `delete_objects`, `list_objects_v2`,
`create_multipart_upload`, `upload_part`, `complete_multipart_upload`,
`list_parts` and `abort_multipart_upload`. They take keyword arguments in the
usual S3 style, and `Router` has the same methods. The `Bucket` argument is a
logical name; the router replaces it with each store's physical bucket name
before calling that store. `delete_objects` and `list_objects_v2` are routed
by bucket alone, as if the key were empty.

When a `put_object` call is mirrored and has a `Body`, the body is split so
that both stores get the full content. If `ContentLength` is given and below
the router's `max_buffer_bytes` (256 MiB by default, set with
`Router(cfg, primary, secondary, max_buffer_bytes=...)`), the body is read
into memory once. Otherwise it is streamed to both stores at the same time.
If splitting fails, `put_object` raises `RoutingError`.

The routing helpers in `s3router.router` can also be called directly:
`dispatch`, `do_serial`, `do_parallel`, `drain_body` and `tee_body`.
`Config.lookup`, `Config.is_logical_bucket` and `Config.physical_buckets`
show how a call would be routed.

## What it does not do

`s3router` is a library only. It has no command-line tool and no HTTP
server, it does not create S3 clients from the configured endpoints, and it
does not retry calls or reconcile stores that drifted apart after a failed
best-effort call.