import io
import pytest

import monty
from tests.util import wsgi


def from_url(url, **kwargs):
    return monty.Request.from_wsgi(wsgi.Request(url, **kwargs).environ())


def test_from_wsgi():
    req = from_url("/foo/bar?baz=1", method="PUT",
                   env={"HTTP_ACCEPT_LANGUAGE": "en-US"})
    assert req.method == "PUT"
    assert req.path == "/foo/bar"
    assert req.query_string == "baz=1"
    assert req.headers["Accept-Language"] == "en-US"
    assert req.route_params == {}
    assert req.previous_return is None


def test_method_is_upper_cased():
    assert monty.Request("get", "/").method == "GET"


def test_vars():
    req = from_url("/x?kind=query&q=fish")
    req.update_route_params({"kind": "route", "id": "7"})
    assert req.query_vars == {"kind": "query", "q": "fish"}
    assert req.vars == {"kind": "route", "q": "fish", "id": "7"}
    assert req["id"] == "7"
    assert req.get("q") == "fish"
    assert req.get("missing", "dflt") == "dflt"
    with pytest.raises(KeyError):
        req["missing"]


def test_route_params_are_replaced():
    req = monty.Request("GET", "/")
    params = {"a": "1"}
    req.update_route_params(params)
    params["b"] = "2"
    assert req.route_params == {"a": "1"}
    req.update_route_params({"c": "3"})
    assert req.route_params == {"c": "3"}


def test_body_bytes():
    assert from_url("/", postdata="a=b").body_bytes() == b"a=b"


@pytest.mark.parametrize("name", ["method", "path", "environ", "headers", "foo"])
def test_unsupported_property(name):
    req = monty.Request("GET", "/")
    with pytest.raises(monty.PropertyCouldNotBeSet) as info:
        setattr(req, name, "x")
    assert info.value.name == name


def test_mutable_properties():
    req = monty.Request("GET", "/")
    req.previous_return = 5
    req.route_params = {"a": "b"}
    assert req.previous_return == 5
    assert req["a"] == "b"


def test_body_bytes_stops_at_content_length():
    environ = {"REQUEST_METHOD": "POST", "PATH_INFO": "/",
               "CONTENT_LENGTH": "3",
               "wsgi.input": io.BytesIO(b"a=b\nNEXT-REQUEST-BYTES")}
    assert monty.Request.from_wsgi(environ).body_bytes() == b"a=b"


@pytest.mark.parametrize("length", [None, "", "0", "junk"])
def test_body_bytes_without_length(length):
    environ = {"wsgi.input": io.BytesIO(b"unread")}
    if length is not None:
        environ["CONTENT_LENGTH"] = length
    assert monty.Request.from_wsgi(environ).body_bytes() == b""
