import wsgiref.types
import wsgiref.simple_server
import wsgiref.headers
import contextlib
from dataclasses import InitVar, dataclass, field
import enum
import json
import logging
import re
import http
import html
import socketserver
import urllib.parse

from . import util

import typing as t
_O = t.Optional
Headers = wsgiref.headers.Headers
StartResponse = wsgiref.types.StartResponse
_AnyHeaders: t.TypeAlias = dict[str, str] | list[tuple[str, str]] | Headers

logger = logging.getLogger("monty")


class HandlerFn(t.Protocol):
    def __call__(self, request: "Request", response: "Response",
                 *params: str) -> t.Any: ...


# A callable, a class to instantiate, or a dotted name of either.
HandlerDescriptor: t.TypeAlias = HandlerFn | type | str


@t.runtime_checkable
class RouteParser(t.Protocol):
    def parse_route(self, route: str | None) -> t.Iterator[re.Pattern[str]]: ...


# Errors ------------------------------------------------------------------

class MontyError(Exception):
    """Base for configuration and usage errors."""


class HandlerCouldNotBeIntegrated(MontyError):
    def __init__(self, detail: str = ""):
        super().__init__(detail or "Handler could not be integrated into the "
                         "application lifecycle.")


class PropertyCouldNotBeSet(MontyError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Property {name!r} could not be set on the request "
                         "because there is no handling for such case.")


class RouteCouldNotBeCompiled(MontyError):
    def __init__(self, route: str):
        self.route = route
        super().__init__(f"Route {route!r} could not be compiled.")


class ResponseAlreadySent(MontyError):
    def __init__(self):
        super().__init__("Response was already sent.")


@dataclass(kw_only=True)
class HttpError(Exception):
    """Throwable HTTP Error."""
    code: int = field(kw_only=False, default=500)
    short: str | None = field(kw_only=False, default=None)
    desc: str | None = None
    headers: dict[str, str] = field(default_factory=dict)  # type:ignore

    def __str__(self):
        return f"HTTP {self.code}" + (f": {self.short}" if self.short else "")

    def all_headers(self): return dict(self.headers)
    def has_cause(self): return self.__cause__ is not None

    def exc_info(self):
        """Get the exception info tuple if this error was raised from an exception."""
        if self.has_cause():
            return (type(self.__cause__), self.__cause__, self.__traceback__)
        return (type(self), self, self.__traceback__)

    def causes(self):
        cause = self.__cause__
        seen = []  # circular reference prevention
        while cause:
            if cause in seen:
                break
            yield cause
            seen.append(cause)
            cause = cause.__cause__

    @classmethod
    @contextlib.contextmanager
    def wrap_exceptions(cls, *args, **kwargs):
        try:
            yield
        except HttpError as ex:
            raise ex
        except Exception as ex:
            raise cls(*args, **kwargs) from ex


@dataclass(kw_only=True)
class UnhandledRequest(HttpError):
    """A route matched but no handler returned a response."""
    short: str | None = field(kw_only=False, default="Unhandled request")


# Request / Response ------------------------------------------------------

@dataclass
class Request:
    method: str
    path: str
    environ: wsgiref.types.WSGIEnvironment = field(default_factory=dict)
    headers: Headers = field(default_factory=lambda: Headers([]))
    route_params: dict[str, str] = field(default_factory=dict)
    previous_return: t.Any = None

    _MUTABLE: t.ClassVar[frozenset[str]] = frozenset(
        {"route_params", "previous_return"})

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())

    def __setattr__(self, name: str, value: t.Any) -> None:
        # fields are assignable once (by __init__); only the mutable ones after
        if name in self._MUTABLE or (
                name in self.__dataclass_fields__ and name not in self.__dict__):
            object.__setattr__(self, name, value)
        else:
            raise PropertyCouldNotBeSet(name)

    @classmethod
    def from_wsgi(cls, environ: wsgiref.types.WSGIEnvironment):
        hlist = [(k[5:].replace("_", "-").title(), v)
                 for k, v in environ.items() if k.startswith("HTTP_")]
        return cls(environ.get('REQUEST_METHOD', 'GET'),
                   environ.get('PATH_INFO') or '/', environ, Headers(hlist))

    def update_route_params(self, params: t.Mapping[str, str]) -> None:
        self.route_params = dict(params)

    @property
    def query_string(self) -> str:
        return self.environ.get("QUERY_STRING", "")

    @property
    def query_vars(self) -> dict[str, str]:
        return dict(urllib.parse.parse_qsl(self.query_string))

    @property
    def vars(self) -> dict[str, str]:
        return self.query_vars | self.route_params

    def body_bytes(self) -> bytes:
        """Read the body, never past CONTENT_LENGTH."""
        try:
            length = int(self.environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        if length <= 0 or "wsgi.input" not in self.environ:
            return b""
        return self.environ["wsgi.input"].read(length)

    def get(self, key: str, default: t.Any = None) -> t.Any:
        return self.vars.get(key, default)

    def __getitem__(self, key: str) -> str:
        return self.vars[key]


@dataclass(kw_only=True)
class Response:
    """An outgoing response: status, headers and body, sent at most once."""
    content: InitVar[t.Any] = field(default=None, kw_only=False)
    code: int = 200
    content_type: str | None = 'text/html'
    charset: str = 'utf-8'
    h: InitVar[_AnyHeaders | None] = None
    headers: Headers = field(init=False, default=None)  # type:ignore
    http_error: HttpError | None = None
    sent: bool = field(init=False, default=False)

    def __post_init__(self, content: t.Any, h: _AnyHeaders | None):
        self.headers = Headers(
            list(h.items()) if isinstance(h, (dict, Headers)) else h or [])
        self._chunks: list[str | bytes] = []
        if content is not None:
            self.set_content(content)
        if self.http_error and self.http_error.code:
            self.code = self.http_error.code

    def _check_unsent(self):
        if self.sent:
            raise ResponseAlreadySent()

    def set_content(self, content: t.Any) -> None:
        self._check_unsent()
        if isinstance(content, (str, bytes)):
            self._chunks = [content]
        elif isinstance(content, (list, tuple)):
            self._chunks = list(content)
        else:  # scalars
            self._chunks = [str(content)]

    def write(self, content: str | bytes) -> None:
        self._check_unsent()
        self._chunks.append(content)

    def finalize(self) -> bytes:
        """Encode the body."""
        return b''.join(c if isinstance(c, bytes) else c.encode(self.charset)
                        for c in self._chunks)

    def _http_status(self) -> str:
        """Get the HTTP status text for the current response code."""
        try:
            return http.HTTPStatus(self.code).phrase
        except ValueError:
            return "StatusPhraseUnknown"

    @property
    def status_line(self) -> str:
        return f"{self.code} {self._http_status()}"

    def _apply_default_headers(self, body: bytes):
        """Set headers that cannonically apply to this response type."""
        if self.content_type:
            cs = f";charset={self.charset}" if self.charset else ""
            self.headers.setdefault('Content-Type', f"{self.content_type}{cs}")
        self.headers.setdefault('Content-Length', str(len(body)))
        if self.http_error:
            for k, v in self.http_error.all_headers().items():
                self.headers.setdefault(k, v)

    def send(self, start_response: StartResponse) -> list[bytes]:
        """Hand status and headers to the server; return the WSGI body."""
        self._check_unsent()
        body = self.finalize()
        self._apply_default_headers(body)
        if self.http_error and self.http_error.has_cause():
            start_response(self.status_line, self.headers.items(),
                           self.http_error.exc_info())
        else:
            start_response(self.status_line, self.headers.items())
        self.sent = True
        return [body]


@dataclass(kw_only=True)
class JsonResponse(Response):
    content_type: str | None = "application/json"

    def set_content(self, content: t.Any) -> None:
        self._check_unsent()
        self.data = content

    def write(self, content: t.Any) -> None:
        raise TypeError("JsonResponse content is replaced with set_content()")

    def finalize(self) -> bytes:
        return json.dumps(getattr(self, 'data', None)).encode(self.charset)


# Routing -----------------------------------------------------------------

class RouteHandler:
    """Compile route patterns into the expressions tried against a path.

    Compiled patterns are cached per route string, so a RouteHandler shared
    between requests compiles each route once.
    """
    CATCH_ALL = re.compile("")

    def __init__(self):
        self._compiled: dict[str, tuple[re.Pattern[str], ...]] = {}

    def parse_route(self, route: str | None) -> t.Iterator[re.Pattern[str]]:
        if route is None:
            return iter((self.CATCH_ALL,))
        if (patterns := self._compiled.get(route)) is None:
            patterns = self._compiled[route] = self.compile(route)
        return iter(patterns)

    def compile(self, route: str) -> tuple[re.Pattern[str], ...]:
        try:
            return tuple(util.route_to_patterns(route))
        except (re.error, ValueError) as ex:
            raise RouteCouldNotBeCompiled(route) from ex


# Dispatch ----------------------------------------------------------------

class Placement(enum.IntEnum):
    PREPEND = 0
    APPEND = 1


class Application:
    """Dispatches one request through route handlers and middleware.

    Each `handle` call (or a method shortcut like `get`) is a dispatch: if
    the request method is allowed and the route matches the path, the
    handler chain `before + handlers + after` runs in order. Every handler
    is called as `handler(request, response, *route_param_values)`; the
    first one to return a Response commits it, and it is sent once the
    chain finishes. Calls that don't apply return None, so a script can list
    many routes for the same request.
    """
    PREPEND = Placement.PREPEND
    APPEND = Placement.APPEND
    ALL_METHODS: tuple[str, ...] = (
        "HEAD", "GET", "POST", "PUT", "PATCH", "DELETE", "PURGE", "OPTIONS",
        "TRACE", "CONNECT")
    DEFAULT_RESPONSE_CLASS = Response

    def __init__(self, request: Request, start_response: StartResponse,
                 response: _O[Response] = None,
                 route_handler: _O[RouteParser] = None):
        self.request = request
        self.start_response = start_response
        self.response = response if response is not None else self.DEFAULT_RESPONSE_CLASS()
        self.route_handler = route_handler if route_handler is not None else RouteHandler()
        self.prepend: list[HandlerDescriptor] = []
        self.append: list[HandlerDescriptor] = []
        self.body: list[bytes] | None = None

    @classmethod
    def from_wsgi(cls, environ: wsgiref.types.WSGIEnvironment,
                  start_response: StartResponse, **kwargs) -> t.Self:
        return cls(Request.from_wsgi(environ), start_response, **kwargs)

    @property
    def sent(self) -> bool:
        return self.body is not None

    def send(self, response: _O[Response] = None) -> list[bytes]:
        """Send `response` (default: the current one) to the client."""
        if self.sent:
            raise ResponseAlreadySent()
        if response is not None:
            self.response = response
        self.body = self.response.send(self.start_response)
        return self.body

    # Request Handling ----------------------------------------------------

    def handle(self, methods: _O[t.Iterable[str]] = None,
               route: _O[str] = None,
               *handlers: HandlerDescriptor) -> list[bytes] | None:
        candidates = self.route_handler.parse_route(route)
        request = self.request
        if self.sent:
            logger.debug("%s %s: response already sent, skipping %r",
                         request.method, request.path, route)
            return None
        allowed = self.ALL_METHODS if methods is None else methods
        if isinstance(allowed, str):
            allowed = (allowed,)
        if request.method not in {m.upper() for m in allowed}:
            return None
        for pattern in candidates:
            if match := pattern.match(request.path):
                break
        else:
            return None

        params = {k: v for k, v in match.groupdict().items() if v is not None}
        request.update_route_params(params)
        logger.debug("%s %s matched %r %s", request.method, request.path,
                     route, params)

        committed = False
        for handler in self._chain(handlers):
            rv = handler(request, self.response, *params.values())
            request.previous_return = rv
            if isinstance(rv, Response) and not committed:
                self.response = rv
                committed = True

        if committed:
            return self.send()
        if route is not None:
            raise UnhandledRequest(
                desc=f"No handler returned a response for {request.method} "
                f"{request.path} (route {route!r}).")
        return None

    def _chain(self, handlers: t.Sequence[HandlerDescriptor]) -> t.Iterator[HandlerFn]:
        for descriptor in [*self.prepend, *handlers, *self.append]:
            try:
                handler = util.resolve_handler(descriptor)
            except (ImportError, AttributeError, ValueError) as ex:
                raise HandlerCouldNotBeIntegrated(
                    f"Handler {descriptor!r} could not be resolved.") from ex
            if handler is None:
                logger.debug("skipping non-callable handler %r", descriptor)
                continue
            yield handler

    def all(self, route: _O[str] = None, *handlers: HandlerDescriptor):
        return self.handle(None, route, *handlers)

    def get(self, route: _O[str] = None, *handlers: HandlerDescriptor):
        return self.handle(("GET",), route, *handlers)

    def post(self, route: _O[str] = None, *handlers: HandlerDescriptor):
        return self.handle(("POST",), route, *handlers)

    def put(self, route: _O[str] = None, *handlers: HandlerDescriptor):
        return self.handle(("PUT",), route, *handlers)

    def patch(self, route: _O[str] = None, *handlers: HandlerDescriptor):
        return self.handle(("PATCH",), route, *handlers)

    def delete(self, route: _O[str] = None, *handlers: HandlerDescriptor):
        return self.handle(("DELETE",), route, *handlers)

    def options(self, route: _O[str] = None, *handlers: HandlerDescriptor):
        return self.handle(("OPTIONS",), route, *handlers)

    def head(self, route: _O[str] = None, *handlers: HandlerDescriptor):
        return self.handle(("HEAD",), route, *handlers)

    # Middleware ----------------------------------------------------------

    def middleware(self, placement: int = Placement.PREPEND,
                   *handlers: HandlerDescriptor) -> t.Self:
        if placement == Placement.PREPEND:
            self.prepend.extend(handlers)
        elif placement == Placement.APPEND:
            self.append.extend(handlers)
        else:
            raise HandlerCouldNotBeIntegrated(
                f"Unknown middleware placement {placement!r}.")
        return self

    def before(self, *handlers: HandlerDescriptor) -> t.Self:
        return self.middleware(Placement.PREPEND, *handlers)

    def after(self, *handlers: HandlerDescriptor) -> t.Self:
        return self.middleware(Placement.APPEND, *handlers)


# Server Running ----------------------------------------------------------

Script: t.TypeAlias = t.Callable[[Application], t.Any]


class App:
    """WSGI entrypoint: runs `script` against a fresh Application per request."""

    def __init__(self, script: Script, *, route_handler: _O[RouteParser] = None):
        self.script = script
        self.route_handler = route_handler if route_handler is not None else RouteHandler()

    def __call__(self, environ, start_response):
        """WSGI entrypoint."""
        application = Application.from_wsgi(
            environ, start_response, route_handler=self.route_handler)
        request = application.request
        try:
            with HttpError.wrap_exceptions():
                self.script(application)
                if not application.sent:
                    raise HttpError(404)
        except HttpError as http_error:
            if application.sent:
                raise
            if http_error.code >= 500:
                logger.exception("%d %s %s", http_error.code,
                                 request.method, request.path)
            application.send(self.error_response(request, http_error))
        return application.body

    def error_response(self, request: Request, http_error: HttpError) -> Response:
        del request  # unused param
        resp = Response(http_error=http_error)
        resp.write(f"<h2>HTTP {resp.code} - {resp._http_status()}</h2>\n")
        if http_error.short:
            resp.write(f"<h3>{html.escape(http_error.short)}</h3>\n")
        if http_error.desc:
            resp.write(f"<div>{html.escape(http_error.desc)}</div>\n")
        return resp

    def make_server(self, port=8080, host='', threaded=True):
        svr = wsgiref.simple_server.WSGIServer
        if threaded:  # Add threading mix-in
            svr = type('ThreadedServer', (socketserver.ThreadingMixIn, svr),
                       {'daemon_threads': True})
        return wsgiref.simple_server.make_server(host, port, self, server_class=svr)

    def serve_forever(self, port=8080, host='', threaded=True):
        print("Serving on %s:%s -- ctrl+c to quit." % (host, port))
        try:
            self.make_server(port, host, threaded).serve_forever()
        except KeyboardInterrupt:
            pass
