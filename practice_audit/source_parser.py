"""Fact extraction for PHP classes, route files, migrations, and templates."""

from __future__ import annotations

import re
from pathlib import PurePosixPath

from practice_audit.facts import FactSet, MethodFact, RouteFact
from practice_audit.php import (
    Deadline,
    MaskedSource,
    ParseError,
    find_closing,
    mask_php,
    statement_end,
)

RELATION_METHODS = (
    "hasOne",
    "hasMany",
    "belongsTo",
    "belongsToMany",
    "hasOneThrough",
    "hasManyThrough",
    "morphTo",
    "morphOne",
    "morphMany",
    "morphToMany",
    "morphedByMany",
)
_RELATION_ALT = "|".join(sorted(RELATION_METHODS, key=len, reverse=True))

_CLASS_RE = re.compile(
    r"^[ \t]*(?:(?:abstract|final|readonly)\s+)*class\s+(?P<name>[A-Za-z_]\w*)"
    r"(?:\s+extends\s+(?P<extends>[\\\w]+))?"
    r"(?:\s+implements\s+[\\\w]+(?:\s*,\s*[\\\w]+)*)?\s*\{",
    re.MULTILINE,
)
_METHOD_RE = re.compile(
    r"(?:(?:public|protected|private|static|final|abstract)\s+)*"
    r"function\s+&?(?P<name>[A-Za-z_]\w*)\s*\("
)
# Classes stay disjoint from the neighbouring \s* so a failed match is linear.
_SIGNATURE_TAIL_RE = re.compile(r"\s*(?::[^{;]*)?(?P<end>[{;])")
_PROPERTY_RE = re.compile(
    r"\b(?:public|protected|private|var)\s+(?:static\s+)?(?:\??array\s+)?"
    r"\$(?P<prop>fillable|guarded)\b"
)
_TRAIT_RE = re.compile(r"^[ \t]*use\s+(?P<names>[\\\w]+(?:\s*,\s*[\\\w]+)*)\s*[;{]", re.MULTILINE)
_RELATION_RE = re.compile(rf"\$this\s*->\s*(?P<rel>{_RELATION_ALT})\s*\(")
_RETURN_RELATION_RE = re.compile(rf"\breturn\s+\$this\s*->\s*(?:{_RELATION_ALT})\s*\(")
_RELATION_ASSIGN_RE = re.compile(
    rf"(?P<var>\$\w+)\s*=\s*\$this\s*->\s*(?:{_RELATION_ALT})\s*\("
)
_RETURN_VARIABLE_RE = re.compile(r"\breturn\s+(?P<var>\$\w+)\b")
_ENV_RE = re.compile(r"(?<![\w$>:\\])env\s*\(")
_NEW_SERVICE_RE = re.compile(
    r"\bnew\s+\\?(?:[A-Za-z_]\w*\\)*"
    r"(?P<cls>[A-Z]\w*(?:Service|Repository|Client|Gateway|Manager))\s*\("
)
_LOCATOR_RE = re.compile(
    r"(?P<call>(?<![\w$>:\\])(?:app|resolve)|\bApp::make(?:With)?)"
    r"\s*\(\s*\\?(?:[A-Za-z_]\w*\\)*(?P<cls>[A-Z]\w*)::class"
)
_MIDDLEWARE_RE = re.compile(r"\$this\s*->\s*middleware\s*\(")
_DATABASE_RE = re.compile(
    r"::factory\s*\(|(?<![\w$>:\\])factory\s*\(|\bDB::"
    r"|->\s*assert(?:DatabaseHas|DatabaseMissing|DatabaseCount|ModelExists|ModelMissing)\s*\("
    r"|->\s*seed\s*\("
)
_RAW_CALL_RE = re.compile(
    r"(?:\bDB::(?P<db>raw|select|statement|insert|update|delete|unprepared)"
    r"|->\s*(?P<method>whereRaw|orWhereRaw|selectRaw|orderByRaw|havingRaw|groupByRaw|fromRaw))"
    r"\s*\("
)
_ROUTE_RE = re.compile(r"\bRoute::(?P<verb>get|post|put|patch|delete|options|any|match)\s*\(")
_ROUTE_URI_RE = re.compile(r"\s*(?:\[[^\]]*\]\s*,\s*)?(['\"])(?P<uri>[^'\"]*)\1")
_ROUTE_NAME_RE = re.compile(r"->\s*name\s*\(")
_CLOSURE_RE = re.compile(r"\b(?:function|fn)\s*\(")
_MIGRATION_RE = re.compile(
    r"\bclass\b(?:\s+(?P<name>[A-Za-z_]\w*))?\s+extends\s+\\?(?:[A-Za-z_]\w*\\)*Migration\b"
)
_BLADE_COMMENT_RE = re.compile(r"\{\{--.*?--\}\}", re.DOTALL)
_RAW_ECHO_RE = re.compile(r"\{!!\s*(?P<expr>.*?)\s*!!\}")
_VIEW_QUERY_RE = re.compile(
    r"\b(?:[A-Z]\w*::(?:where\w*|all|find\w*|first\w*|query|get|count|paginate)|DB::\w+)\s*\("
)
_SAFE_RAW_ECHOES = ("csrf_field(", "method_field(")


def parse_source(path: str, source: str, deadline: Deadline | None = None) -> list[FactSet]:
    """Extract fact sets from one file.

    ``path`` is the POSIX path relative to the audited root and decides how
    the file is interpreted. Raises ``ParseError`` when the file cannot be
    structurally understood.
    """
    deadline = deadline or Deadline()
    posix = PurePosixPath(path)
    if posix.name.endswith(".blade.php"):
        return [parse_view(path, source, deadline)]
    parts = posix.parts
    if parts and parts[0] == "config":
        return []
    if parts and parts[0] == "routes":
        return [parse_routes(path, source, deadline)]
    if "migrations" in parts[:-1] and "database" in parts[:-1]:
        migration = parse_migration(path, source, deadline)
        return [migration] if migration is not None else []
    return parse_classes(path, source, deadline)


def parse_classes(path: str, source: str, deadline: Deadline) -> list[FactSet]:
    masked = mask_php(source, deadline)
    text = masked.text
    facts: list[FactSet] = []
    for match in _CLASS_RE.finditer(text):
        deadline.check()
        open_brace = match.end() - 1
        close_brace = find_closing(text, open_brace)
        facts.append(_class_facts(path, masked, match, open_brace + 1, close_brace, deadline))
    return facts


def parse_routes(path: str, source: str, deadline: Deadline) -> FactSet:
    masked = mask_php(source, deadline)
    text = masked.text
    routes: list[RouteFact] = []
    for match in _ROUTE_RE.finditer(text):
        deadline.check()
        end = statement_end(text, match.start())
        # The handler lives in the call arguments; the name can only follow in the chain.
        close_paren = find_closing(text, match.end() - 1)
        uri_match = _ROUTE_URI_RE.match(masked.original, match.end(), end)
        routes.append(
            RouteFact(
                line=masked.lines.line_of(match.start()),
                verb=match.group("verb"),
                uri=uri_match.group("uri") if uri_match else "?",
                named=_ROUTE_NAME_RE.search(text, close_paren + 1, end) is not None,
                closure=_CLOSURE_RE.search(text, match.end(), close_paren) is not None,
            )
        )
    return FactSet(
        kind="route-list",
        name=path,
        path=path,
        line=1,
        attributes={
            "routes": tuple(routes),
            "env_calls": _lines(masked, _ENV_RE, 0, len(text)),
        },
    )


def parse_migration(path: str, source: str, deadline: Deadline) -> FactSet | None:
    masked = mask_php(source, deadline)
    text = masked.text
    declaration = _MIGRATION_RE.search(text)
    if declaration is None:
        return None

    has_up = False
    has_down = False
    down_empty = False
    search_from = declaration.end()
    while True:
        deadline.check()
        method = _METHOD_RE.search(text, search_from)
        if method is None:
            break
        body = _method_body(text, method.end() - 1)
        name = method.group("name")
        if name == "up":
            has_up = True
        elif name == "down":
            has_down = True
            down_empty = body is None or not text[body[0] : body[1]].strip()
        search_from = body[1] + 1 if body is not None else method.end()

    name = declaration.group("name") or PurePosixPath(path).name.removesuffix(".php")
    return FactSet(
        kind="migration",
        name=name,
        path=path,
        line=masked.lines.line_of(declaration.start()),
        attributes={"has_up": has_up, "has_down": has_down, "down_empty": down_empty},
    )


def parse_view(path: str, source: str, deadline: Deadline) -> FactSet:
    opened = source.rfind("{{--")
    if opened != -1 and source.find("--}}", opened) == -1:
        raise ParseError("unterminated template comment", source.count("\n", 0, opened) + 1)
    text = _BLADE_COMMENT_RE.sub(lambda item: re.sub(r"[^\n]", " ", item.group(0)), source)
    raw_echoes: list[tuple[int, str]] = []
    queries: list[tuple[int, str]] = []
    env_calls: list[int] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if lineno % 256 == 0:
            deadline.check()
        for echo in _RAW_ECHO_RE.finditer(line):
            expr = echo.group("expr")
            if expr.startswith(_SAFE_RAW_ECHOES):
                continue
            raw_echoes.append((lineno, _clip(expr)))
        for query in _VIEW_QUERY_RE.finditer(line):
            queries.append((lineno, query.group(0).rstrip("( ")))
        if _ENV_RE.search(line):
            env_calls.append(lineno)

    return FactSet(
        kind="view",
        name=_view_name(path),
        path=path,
        line=1,
        attributes={
            "raw_echoes": tuple(raw_echoes),
            "queries": tuple(queries),
            "env_calls": tuple(env_calls),
        },
    )


def _class_facts(
    path: str,
    masked: MaskedSource,
    declaration: re.Match[str],
    body_start: int,
    body_end: int,
    deadline: Deadline,
) -> FactSet:
    text = masked.text
    lines = masked.lines
    methods: list[MethodFact] = []
    method_spans: list[tuple[int, int]] = []
    search_from = body_start
    while True:
        deadline.check()
        method = _METHOD_RE.search(text, search_from, body_end)
        if method is None:
            break
        body = _method_body(text, method.end() - 1)
        line = lines.line_of(method.start("name"))
        if body is None:
            methods.append(MethodFact(name=method.group("name"), line=line))
            search_from = method.end()
            continue
        method_text = text[body[0] : body[1]]
        relation = _RELATION_RE.search(method_text)
        methods.append(
            MethodFact(
                name=method.group("name"),
                line=line,
                relation=relation.group("rel") if relation else None,
                returns_relation=_returns_relation(method_text),
            )
        )
        method_spans.append(body)
        search_from = body[1] + 1

    def outside_methods(offset: int) -> bool:
        return not any(start <= offset < end for start, end in method_spans)

    properties = {
        item.group("prop")
        for item in _PROPERTY_RE.finditer(text, body_start, body_end)
        if outside_methods(item.start())
    }
    traits: list[str] = []
    for item in _TRAIT_RE.finditer(text, body_start, body_end):
        if outside_methods(item.start()):
            traits.extend(name.strip().split("\\")[-1] for name in item.group("names").split(","))

    service_lookups = [
        (lines.line_of(item.start()), f"new {item.group('cls')}")
        for item in _NEW_SERVICE_RE.finditer(text, body_start, body_end)
    ]
    service_lookups.extend(
        (lines.line_of(item.start()), f"{item.group('call')}({item.group('cls')}::class)")
        for item in _LOCATOR_RE.finditer(text, body_start, body_end)
    )

    raw_interpolations: list[tuple[int, str]] = []
    for item in _RAW_CALL_RE.finditer(text, body_start, body_end):
        open_paren = item.end() - 1
        close_paren = find_closing(text, open_paren)
        if masked.has_interpolation_within(open_paren, close_paren + 1):
            call = f"DB::{item.group('db')}" if item.group("db") else item.group("method")
            raw_interpolations.append((lines.line_of(item.start()), call))

    extends = declaration.group("extends")
    return FactSet(
        kind="class",
        name=declaration.group("name"),
        path=path,
        line=lines.line_of(declaration.start("name")),
        attributes={
            "extends": extends.split("\\")[-1] if extends else None,
            "traits": tuple(traits),
            "has_fillable": "fillable" in properties,
            "has_guarded": "guarded" in properties,
            "methods": tuple(methods),
            "env_calls": _lines(masked, _ENV_RE, body_start, body_end),
            "service_lookups": tuple(sorted(service_lookups)),
            "middleware_calls": _lines(masked, _MIDDLEWARE_RE, body_start, body_end),
            "database_calls": _lines(masked, _DATABASE_RE, body_start, body_end),
            "raw_interpolations": tuple(raw_interpolations),
        },
    )


def _method_body(text: str, open_paren: int) -> tuple[int, int] | None:
    close_paren = find_closing(text, open_paren)
    tail = _SIGNATURE_TAIL_RE.match(text, close_paren + 1)
    if tail is None or tail.group("end") == ";":
        return None
    open_brace = tail.end() - 1
    return (open_brace + 1, find_closing(text, open_brace))


def _returns_relation(method_text: str) -> bool:
    """True when the method returns a relation directly or through a local variable."""
    if _RETURN_RELATION_RE.search(method_text):
        return True
    assigned = {item.group("var") for item in _RELATION_ASSIGN_RE.finditer(method_text)}
    if not assigned:
        return False
    return any(
        item.group("var") in assigned for item in _RETURN_VARIABLE_RE.finditer(method_text)
    )


def _lines(
    masked: MaskedSource, pattern: re.Pattern[str], start: int, end: int
) -> tuple[int, ...]:
    return tuple(
        masked.lines.line_of(item.start()) for item in pattern.finditer(masked.text, start, end)
    )


def _view_name(path: str) -> str:
    trimmed = path.removesuffix(".blade.php")
    marker = "resources/views/"
    if marker in trimmed:
        trimmed = trimmed.split(marker, 1)[1]
    return trimmed.replace("/", ".")


def _clip(value: str, limit: int = 60) -> str:
    value = " ".join(value.split())
    if len(value) <= limit:
        return value
    return f"{value[: limit - 3]}..."

