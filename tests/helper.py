from tests.util import wsgi
from tests import _config

import typing as t
import monty
from dataclasses import dataclass
from _pytest.assertion import util as _pytest_util


@dataclass(slots=True)
class _Fault:
    key: str
    want: t.Any
    got: t.Any

    def __str__(self):
        return f"{self.key}: expected={self.want!r}, got={self.got!r}"


def basic_handler(content: t.Any, response_class=monty.Response):
    def handler(request: monty.Request, response: monty.Response, *params):
        return response_class(content)
    return handler


def recording_handler(calls: list, name: str, rv: t.Any = None):
    """Handler that appends (name, params) to `calls` and returns `rv`."""
    def handler(request: monty.Request, response: monty.Response, *params):
        calls.append((name, params))
        return rv
    return handler


class StartResponse:
    """Records what a Response hands to the server."""

    def __init__(self):
        self.calls: list[tuple[str, list[tuple[str, str]], t.Any]] = []

    def __call__(self, status, headers, exc_info=None):
        self.calls.append((status, list(headers), exc_info))

    @property
    def status(self) -> str:
        return self.calls[-1][0]

    @property
    def headers(self) -> dict[str, str]:
        return dict(self.calls[-1][1])


def make_application(url: str = "/", method: str = "GET", **kwargs) -> monty.Application:
    environ = wsgi.Request(url, method=method).environ()
    return monty.Application.from_wsgi(environ, StartResponse(), **kwargs)


def assert_response(resp: wsgi.Response,
                    code: int,
                    content: None | str | bytes | dict | list = None,
                    headers: None | dict[str, str] = None):
    __tracebackhide__ = True
    faults = []

    if code != resp.code:
        faults.append(_Fault("Response.code", code, resp.code))

    if content is not None:
        match content:
            case bytes():
                resp_content = resp.output_bytes()
            case str():
                resp_content = resp.output_str()
            case dict() | list():
                resp_content = resp.output_json()
            case _:
                raise ValueError(f"content is unknown type: ({type(content)})")
        if content != resp_content:
            faults.append(_Fault("Response.content", content, resp_content))

    for k, want in (headers or {}).items():
        got = resp.headers_normalized.get(k.lower())
        if want != got:
            faults.append(_Fault(f"Response.header[{k}]", want, got))

    if faults:
        if len(faults) == 1 and not _config.verbose:
            msg = str(faults[0])
        else:
            details = [repr(resp), *[f">> {f}" for f in faults]]
            if _config.verbose:
                details.append(">-----RESPONSE DUMP-----")
                details.extend(
                    f">|{line}" for line in resp.dump().splitlines())
            msg = "\n".join(details)
        raise AssertionError(_pytest_util.format_explanation(msg))


def assert_produces_response(
        app: wsgi.WSGIApplication,
        url: str,
        code: int,
        content: str | bytes | dict | list | None = None,
        headers: None | dict[str, str] = None,
        **argv) -> wsgi.Response:
    __tracebackhide__ = True
    got = wsgi.Request(url, **argv).get_response(app)
    assert_response(got, code, content, headers)
    return got
