"""Monty is a tiny dispatch layer for Python WSGI applications."""

from .core import (
    App,
    Application,
    HandlerCouldNotBeIntegrated,
    HttpError,
    JsonResponse,
    MontyError,
    Placement,
    PropertyCouldNotBeSet,
    Request,
    Response,
    ResponseAlreadySent,
    RouteCouldNotBeCompiled,
    RouteHandler,
    RouteParser,
    UnhandledRequest,
)

__all__ = [
    "App",
    "Application",
    "HandlerCouldNotBeIntegrated",
    "HttpError",
    "JsonResponse",
    "MontyError",
    "Placement",
    "PropertyCouldNotBeSet",
    "Request",
    "Response",
    "ResponseAlreadySent",
    "RouteCouldNotBeCompiled",
    "RouteHandler",
    "RouteParser",
    "UnhandledRequest",
]
