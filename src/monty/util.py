import re
import pkgutil
import typing as t

# pylint: disable=missing-function-docstring

_PLACEHOLDER_RE = re.compile(
    r'<([A-Za-z_]\w*)(?::((?:\\.|[^>])*))?>'  # <name> or <name:regex>
    r'|:([A-Za-z_]\w*)'                         # :name
    r'|(\*)')                                   # anonymous segment
_SEGMENT = r'[^/]+'


class _Optional(list):
    """A bracketed part of a route pattern."""


def _split_optional(val: str) -> list:
    """Split a pattern into literal text and nested _Optional parts."""
    stack: list[list] = [[]]
    buf, i = [], 0
    while i < len(val):
        c = val[i]
        if c == '<':  # brackets inside <name:regex> belong to the regex
            end = i + 1
            while end < len(val) and val[end] != '>':
                end += 2 if val[end] == '\\' else 1
            if end >= len(val):
                raise ValueError(f"unterminated '<' in route {val!r}")
            buf.append(val[i:end + 1])
            i = end + 1
            continue
        if c == '[':
            stack[-1].append(''.join(buf))
            stack.append(_Optional())
            buf = []
        elif c == ']':
            if len(stack) == 1:
                raise ValueError(f"unbalanced ']' in route {val!r}")
            stack[-1].append(''.join(buf))
            part = stack.pop()
            stack[-1].append(part)
            buf = []
        else:
            buf.append(c)
        i += 1
    if len(stack) != 1:
        raise ValueError(f"unbalanced '[' in route {val!r}")
    stack[0].append(''.join(buf))
    return stack[0]


def _expand(parts: list) -> list[str]:
    out = ['']
    for part in parts:
        if isinstance(part, _Optional):
            alts = _expand(part) + ['']
            out = [prefix + alt for prefix in out for alt in alts]
        else:
            out = [prefix + part for prefix in out]
    return out


def expand_route(val: str) -> list[str]:
    """All concrete forms of a route, optional parts included first."""
    seen: dict[str, None] = {}
    for form in _expand(_split_optional(val)):
        seen.setdefault(form or '/')
    return list(seen)


def _to_regex(val: str) -> str:
    parts, i = ['^'], 0
    for m in _PLACEHOLDER_RE.finditer(val):
        if m.start() > i:
            parts.append(re.escape(val[i:m.start()]))
        name, custom, colon_name, star = m.groups()
        if star:
            parts.append(_SEGMENT)
        else:
            parts.append('(?P<%s>%s)' % (name or colon_name, custom or _SEGMENT))
        i = m.end()
    if i < len(val):
        parts.append(re.escape(val[i:]))
    parts.append('$')
    return ''.join(parts)


def route_to_patterns(val: str) -> list[re.Pattern[str]]:
    """Encode a route as one or more anchored regular expressions.

    A leading "^" marks a raw regex which is compiled unchanged. Otherwise
    ":name", "<name>" and "<name:regex>" capture a value, "*" matches one
    segment, and "[...]" marks an optional part. Raises re.error or
    ValueError for malformed routes.
    """
    if val.startswith('^'):
        return [re.compile(val)]
    head = re.compile(r'^//+')
    return [re.compile(_to_regex(head.sub('/', form)))
            for form in expand_route(val)]


def resolve_handler(handler: t.Any) -> t.Callable[..., t.Any] | None:
    """Turn a handler descriptor into something callable, or None.

    Strings name an importable object ("pkg.mod:obj" or "pkg.mod.obj").
    Classes are instantiated without arguments. Raises ImportError,
    AttributeError or ValueError when a name can't be resolved.
    """
    if isinstance(handler, str):
        handler = pkgutil.resolve_name(handler)
    if isinstance(handler, type):
        handler = handler()
    return handler if callable(handler) else None
