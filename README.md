# trexsvc

Building blocks for a small HTTP microservice written against WSGI. No
third-party dependencies; Python 3.10 or later.

## Modules

### `trexsvc.reqlog`

`request_logging_middleware(app, formatter=None, logger=None)` wraps a WSGI
application and logs one line for each request and one for its response, at
INFO level. The response line is written when the response is closed and
carries the status code and the elapsed time (for example `1.5ms`). Requests
to `/api/rh-trex` (with or without a trailing slash) are not logged.

`JSONLogFormatter(verbose=False)` produces the lines as JSON documents with
the keys `request_method`, `request_url` and `request_remote_ip` for requests,
and `response_status` and `elapsed` for responses. With `verbose=True` it also
includes `request_header`, `request_body` and `response_body`; the request
body is read and put back so the application still receives it.
`ResponseInfo` is the dataclass handed to `format_response_log`. If a
formatter raises, the middleware logs an error instead of failing the request.

### `trexsvc.metrics`

`RequestMetrics` is a thread-safe request counter and duration histogram
(buckets 0.1, 1, 10 and 30 seconds) keyed by method, path and status code:

- `observe(method, path, code, seconds)` records one request;
- `count(method, path, code)` and `bucket_counts(method, path, code)` read
  them back (bucket counts are cumulative and end with `math.inf`);
- `reset()` clears everything;
- `render()` returns the Prometheus text format, with the metrics
  `api_inbound_request_count` and `api_inbound_request_duration`.

`metrics_middleware(app, metrics, route_template=None)` records every request
passing through a WSGI app. `route_template` is a callable that maps the
environ to the matched route template, or `None`. `normalize_path` turns a
template such as `/dinosaurs/{id}` into `/dinosaurs/-`, and an unknown route
into `/-`.

### `trexsvc.server`

- `HealthCheckServer(bind_address, updater=None, enable_https=False, cert_file="", key_file="")`
  is a WSGI app and a server. `GET /healthcheck` answers `200` with `{}`, or
  `503` with `{"maintenance_status": "maintenance mode"}` after
  `POST /healthcheck/down`; `POST /healthcheck/up` clears it. The state lives
  in a `StatusUpdater` (`update(error)`, `status()`).
- `MetricsServer(bind_address, metrics=None, ...)` serves
  `RequestMetrics.render()` at `/metrics`.
- Both have a blocking `start()` and a `stop()`; run `start()` in a thread.
  With `enable_https` they need both `cert_file` and `key_file`.
- `remove_trailing_slash(app)` strips one trailing `/` from the request path.
- `check(error, message)` logs the error and raises `SystemExit(1)` unless
  `error` is `None` or a `ServerClosedError`.

### `trexsvc.environments`

Named environments `development`, `testing` and `production`
(`DevelopmentEnvironment`, `TestingEnvironment`, `ProductionEnvironment`),
each with its own flag defaults (`flags()`) and configuration adjustments
(`visit_config(config)`). `environment_name_from_env()` reads `OCM_ENV`,
defaulting to `development`; `environment()` returns the process-wide `Env`.

`Env.add_flags(flags)` defines one flag per setting of `ApplicationConfig` on
a `FlagSet` and applies the environment's defaults through
`set_config_defaults`; `Env.initialize()` copies the flag values into the
configuration and runs the environment's visitor. `FlagSet` offers
`define`, `set`, `get` and `parse`; a flag's type is that of its default, and
bad names or values raise `FlagError`. An unknown environment name raises
`UnknownEnvironmentError`.

### `trexsvc.clone`

`clone_tree(source, CloneOptions(name=..., repo=..., destination=...))`
copies a project tree, leaving out `.git`, and returns the files written.
`rename_content` replaces the template's module path and every spelling of
its name (`RHTrex`, `rh-trex`, `rhtrex`, `trex`, `TRex`) with the new name;
`destination_path` also renames `trex` in target paths.

## Command line

```
trex --help
trex clone --name my-service --repo example.com/acme --destination /tmp/my-service
```

`clone` copies the current directory (or the one given with `--source`).
Defaults are `--name rh-trex`, `--repo github.com/openshift-online` and
`--destination /tmp/clone-test`. File errors are printed, not raised.

## Using the middleware

```python
from trexsvc.metrics import RequestMetrics, metrics_middleware
from trexsvc.reqlog import request_logging_middleware
from trexsvc.server import remove_trailing_slash

metrics = RequestMetrics()
app = remove_trailing_slash(
    request_logging_middleware(metrics_middleware(my_app, metrics, lambda environ: None))
)
print(metrics.render())
```

## What it does not do

There is no API server with resource endpoints, no authentication, no
database storage or migrations and no event controllers. The `trex` command
has only the `clone` sub-command: there is no `serve` or `migrate`. The
health check and metrics servers and the middleware are pieces to assemble
into your own application.