# makerserve

makerserve is a small asynchronous HTTP service built on aiohttp that sits in
front of an Ollama instance. A client posts a JSON document that names a file
type and gives a short description. The service loads the matching TOML
specification and builds a complete prompt from it. It then asks Ollama to
generate the file and returns the generated text.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Configuration

`makerserve.state.server_init()` reads these settings from the environment:

| Variable               | Meaning                                                |
|------------------------|--------------------------------------------------------|
| `BACKEND_PORT`         | Port the server listens on, on `0.0.0.0`               |
| `OLLAMA_PORT`          | Port of the Ollama service, reached at `http://ollama` |
| `DEFAULT_OLLAMA_MODEL` | Model used when a specification names none             |

Specifications are read from `/app/specifications`. Start-up fails with a
`makerserve.errors.ServerError` in any of these cases:

- a variable is missing;
- either port is not a number from 0 to 65535;
- the specifications directory does not exist.

The command prints the error and exits with status 1.

## Running

```
makerserve
```

The command has no options of its own besides `--help`. It logs at INFO
level to standard error. It stops on SIGINT or SIGTERM and waits up to ten
seconds for open connections to close.

## Endpoints

- `POST /create`
  - The body is `{"filetype": "<kind>", "content": "<description>"}`.
  - `<kind>` is one of `make`, `cmake`, `readme`, `docker`, `spec` or `anki`.
    The file `<kind>.toml` is loaded from the specifications directory.
  - The generated text comes back as `text/plain; charset=utf-8`.
  - A `Content-Type` that does not start with `application/json` gets an
    empty 415.
  - A body that is not a valid request gets an empty 400.
  - A missing or unreadable specification gets an empty 500, and so does a
    failure to reach Ollama.
  - Any method other than POST gets an empty 400.
- `GET /models`
  - Relays the response of Ollama's `/api/tags`: status, headers and body.
  - Any other method gets an empty 400.
- `GET /specs`
  - Returns a JSON array of the available specification names: the `.toml`
    files in the specifications directory, sorted and without the extension.
  - Any other method gets an empty 405.

Any other path gets an empty 400. An error that escapes a handler is answered
with status 200 and the error message as the body.

## Specification files

```toml
model = "llama3.2"
think = "medium"          # low, medium, high, true or false; default true

[system]                  # optional; sent to Ollama as "options"
temperature = 0.1
top_p = 0.9
num_ctx = 16384
num_predict = 2048

[context]
system_prompt = "Generate clean output only."   # optional
prompt = "Generate a Makefile"
constraints = ["NO markdown", "raw output only"]
```

The request sent to Ollama is never streamed. Its prompt is made of these
parts, in order:

1. the specification's prompt;
2. a short schema note;
3. a line for the file type with the client's description;
4. the constraints, joined with `|`, if there are any.

## Request handling

Each request is classified by `makerserve.state.request_origin`. A request
counts as external in either of these cases:

- it carries a `cf-connecting-ip` header;
- its request target is an absolute URL naming the public host
  (`makerserve.state.PUBLIC_HOST`).

Any other request counts as internal.

External requests pass through these middlewares in `makerserve.middleware`:

- `HttpErrResolver`;
- a `RateLimiter` of 10 requests per 10 seconds, which delays requests over
  the limit;
- a `TimeoutGuard` of 3 minutes;
- a `ConcurrencyLimit` of 50.

Internal requests pass through `HttpErrResolver` and a `TimeoutGuard` of
10 minutes.

Both timeout guards are built with the `bypass` policy, so neither one ever
cuts a request short.

## Library use

The pieces can also be used on their own:

```python
from pathlib import Path

from makerserve.prompt import Filetype, ResolvedPrompt, TomlSpec

spec = TomlSpec.from_toml(Path("make.toml").read_text())
filetype = Filetype.from_json('{"filetype": "make", "content": "for a C project"}')
print(ResolvedPrompt.from_spec(spec, filetype).to_json())
```

- `makerserve.state.server_init(environ, specifications)` accepts a mapping
  in place of the environment and a different specifications directory.
- `makerserve.app.build_app(state)` returns the aiohttp application.
- `makerserve.app.serve(state, host, port)` runs it until a signal arrives.

## What it does not do

- The command always reads its specifications from `/app/specifications`. To
  use another directory, call `server_init` and `serve` yourself.
- Ollama is always reached at host `ollama` over plain HTTP.
- Generated text is returned only once Ollama has finished; it is not
  streamed to the client.
- There is no TLS and no authentication.