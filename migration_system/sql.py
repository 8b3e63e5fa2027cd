"""
SQL Text Helpers

Minimal SQL scanning shared by the unit loader, the validator and the target
connection: statement splitting, comment stripping, header metadata and
extraction of the schema objects a script creates. This is not a SQL parser;
it only understands quoting, comments and the handful of statement shapes
that migration units are checked against.
"""

import re
from dataclasses import dataclass
from typing import Iterator, Optional

_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z_0-9]*)?\$")
_HEADER_LINE = re.compile(r"^--\s*([A-Za-z][A-Za-z _-]*?)\s*:\s*(.*?)\s*$")

_NAME = r'((?:"[^"]+"|[\w$]+)(?:\.(?:"[^"]+"|[\w$]+))?)'

CREATE_TABLE = re.compile(
    r"^\s*CREATE\s+(?:OR\s+REPLACE\s+)?(?:(?:GLOBAL|LOCAL)\s+)?"
    r"(?:TEMP\s+|TEMPORARY\s+|UNLOGGED\s+)?TABLE\s+(IF\s+NOT\s+EXISTS\s+)?" + _NAME,
    re.IGNORECASE,
)
# Remainder of a CREATE TABLE populated from a query, optional column names first
TABLE_AS_QUERY = re.compile(
    r"\s*(?:\([^()]*\)\s*)?AS\s*\(?\s*(?:SELECT|WITH|VALUES|TABLE)\b", re.IGNORECASE
)
CREATE_INDEX = re.compile(
    r"^\s*CREATE\s+(?:UNIQUE\s+)?INDEX\s+(?:CONCURRENTLY\s+)?(IF\s+NOT\s+EXISTS\s+)?"
    + _NAME
    + r"\s+ON\s+(?:ONLY\s+)?"
    + _NAME,
    re.IGNORECASE,
)
CREATE_VIEW = re.compile(
    r"^\s*CREATE\s+(OR\s+REPLACE\s+)?(?:TEMP\s+|TEMPORARY\s+)?(?:RECURSIVE\s+)?"
    r"VIEW\s+(IF\s+NOT\s+EXISTS\s+)?" + _NAME,
    re.IGNORECASE,
)
CREATE_OTHER = re.compile(
    r"^\s*CREATE\s+(OR\s+REPLACE\s+)?(?:MATERIALIZED\s+VIEW|SEQUENCE|SCHEMA)\s+"
    r"(IF\s+NOT\s+EXISTS\s+)?",
    re.IGNORECASE,
)
ADD_COLUMN = re.compile(
    r"^\s*ALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?" + _NAME + r"\s+ADD\s+"
    r"(?!CONSTRAINT\b|PRIMARY\b|UNIQUE\b|FOREIGN\b|CHECK\b)(?:COLUMN\s+)?(IF\s+NOT\s+EXISTS\s+)?",
    re.IGNORECASE,
)
DROP_OBJECT = re.compile(
    r"^\s*DROP\s+(TABLE|INDEX|VIEW|MATERIALIZED\s+VIEW|SCHEMA|DATABASE|SEQUENCE|"
    r"FUNCTION|PROCEDURE|TRIGGER|TYPE|EXTENSION|ROLE|USER)\s+(IF\s+EXISTS\s+)?",
    re.IGNORECASE,
)
ALTER_DROP = re.compile(r"^\s*ALTER\s+TABLE\b.*?\bDROP\b", re.IGNORECASE | re.DOTALL)
TRUNCATE = re.compile(r"^\s*TRUNCATE\b", re.IGNORECASE)
DELETE_FROM = re.compile(r"^\s*DELETE\s+FROM\b", re.IGNORECASE)
WHERE_CLAUSE = re.compile(r"\bWHERE\b", re.IGNORECASE)
GRANT = re.compile(r"^\s*(?:GRANT\b|ALTER\s+DEFAULT\s+PRIVILEGES\b)", re.IGNORECASE)
COMMENT_ON_TABLE = re.compile(r"^\s*COMMENT\s+ON\s+TABLE\s+" + _NAME, re.IGNORECASE)
PRIMARY_KEY = re.compile(r"\bPRIMARY\s+KEY\b", re.IGNORECASE)

DDL_KEYWORDS = ("CREATE", "ALTER", "DROP", "COMMENT", "RENAME")


@dataclass(frozen=True)
class Statement:
    """A single SQL statement with comments removed."""

    text: str
    line: int  # 1-based line where the statement starts

    @property
    def keyword(self) -> str:
        parts = self.text.split(None, 1)
        return parts[0].upper() if parts else ""


@dataclass(frozen=True)
class SchemaObject:
    """A schema object a unit is expected to create."""

    kind: str  # table | index | view
    name: str
    schema: Optional[str] = None
    table: Optional[str] = None  # owning table for indexes

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    def __str__(self) -> str:
        return f"{self.kind}:{self.qualified_name}"

    @classmethod
    def parse(cls, declaration: str) -> "SchemaObject":
        """Parse a 'kind:name' declaration such as 'table:public.users'."""
        kind, _, name = declaration.partition(":")
        kind = kind.strip().lower()
        if kind not in ("table", "index", "view") or not name.strip():
            raise ValueError(f"Invalid schema object declaration: {declaration!r}")
        schema, object_name = split_identifier(name.strip())
        return cls(kind=kind, name=object_name, schema=schema)


@dataclass(frozen=True)
class CreatedTable:
    """A CREATE TABLE statement found in a script."""

    name: str
    schema: Optional[str]
    statement: Statement
    if_not_exists: bool

    @property
    def from_query(self) -> bool:
        """True for CREATE TABLE ... AS SELECT, which declares no columns."""
        match = CREATE_TABLE.match(self.statement.text)
        return bool(match and TABLE_AS_QUERY.match(self.statement.text, match.end()))

    @property
    def body(self) -> str:
        """Column/constraint list between the outer parentheses."""
        if self.from_query:
            return ""
        text = self.statement.text
        start = text.find("(")
        if start == -1:
            return ""
        depth = 0
        for index in range(start, len(text)):
            if text[index] == "(":
                depth += 1
            elif text[index] == ")":
                depth -= 1
                if depth == 0:
                    return text[start + 1 : index]
        return text[start + 1 :]


def _scan(script: str) -> Iterator[tuple[str, str]]:
    """Yield (kind, text) tokens: comment, string, semicolon or text."""
    i = 0
    n = len(script)
    text_start = 0

    while i < n:
        ch = script[i]
        nxt = script[i + 1] if i + 1 < n else ""

        if ch == "-" and nxt == "-":
            end = script.find("\n", i)
            end = n if end == -1 else end
            kind = "comment"
        elif ch == "/" and nxt == "*":
            end = script.find("*/", i + 2)
            end = n if end == -1 else end + 2
            kind = "comment"
        elif ch in ("'", '"'):
            end = i + 1
            while end < n:
                if script[end] == ch:
                    if end + 1 < n and script[end + 1] == ch:
                        end += 2
                        continue
                    break
                end += 1
            end = min(end + 1, n)
            kind = "string"
        elif ch == "$" and _DOLLAR_TAG.match(script, i):
            tag = _DOLLAR_TAG.match(script, i).group(0)
            end = script.find(tag, i + len(tag))
            end = n if end == -1 else end + len(tag)
            kind = "string"
        elif ch == ";":
            end = i + 1
            kind = "semicolon"
        else:
            i += 1
            continue

        if text_start < i:
            yield "text", script[text_start:i]
        yield kind, script[i:end]
        i = end
        text_start = end

    if text_start < n:
        yield "text", script[text_start:]


def iter_statements(script: str) -> list[Statement]:
    """Split a script into comment-free statements with their start lines."""
    statements = []
    parts: list[str] = []
    line = 1
    start_line = None

    for kind, text in _scan(script):
        if kind == "semicolon":
            _flush(parts, start_line, statements)
            parts = []
            start_line = None
        elif kind == "comment":
            # keep the tokens on either side of the comment apart
            if parts:
                parts.append(" " + "\n" * text.count("\n"))
        else:
            if start_line is None and text.strip():
                leading = text[: len(text) - len(text.lstrip())]
                start_line = line + leading.count("\n")
            parts.append(text)
        line += text.count("\n")

    _flush(parts, start_line, statements)
    return statements


def _flush(parts: list[str], start_line: Optional[int], statements: list[Statement]) -> None:
    text = "".join(parts).strip()
    if text:
        statements.append(Statement(text=text, line=start_line or 1))


def split_statements(script: str) -> list[str]:
    """Split a script into executable statements without comments."""
    return [statement.text for statement in iter_statements(script)]


def strip_comments(script: str) -> str:
    """Remove line and block comments while leaving string literals intact."""
    return "".join(
        " " if kind == "comment" else text for kind, text in _scan(script)
    )


def parse_header(script: str) -> dict[str, str]:
    """
    Read leading '-- Key: value' comment lines.

    Stops at the first line that is neither blank nor a comment. Keys are
    lower-cased, e.g. '-- Description: Create users' -> {'description': ...}.
    """
    header = {}
    for raw_line in script.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if not line.startswith("--"):
            break
        match = _HEADER_LINE.match(line)
        if match:
            header.setdefault(match.group(1).strip().lower(), match.group(2))
    return header


def split_identifier(name: str) -> tuple[Optional[str], str]:
    """Split 'schema.name' into parts, unquoting and folding unquoted parts."""
    parts = re.findall(r'"[^"]+"|[^.]+', name)
    cleaned = [
        part[1:-1] if part.startswith('"') else part.lower() for part in parts
    ]
    if len(cleaned) >= 2:
        return cleaned[-2], cleaned[-1]
    return None, cleaned[0] if cleaned else name


def created_tables(statements: list[Statement]) -> list[CreatedTable]:
    """Return every CREATE TABLE found in the statements."""
    tables = []
    for statement in statements:
        match = CREATE_TABLE.match(statement.text)
        if match:
            schema, name = split_identifier(match.group(2))
            tables.append(
                CreatedTable(
                    name=name,
                    schema=schema,
                    statement=statement,
                    if_not_exists=bool(match.group(1)),
                )
            )
    return tables


def created_objects(statements: list[Statement]) -> list[SchemaObject]:
    """Derive the tables, indexes and views a script creates, in order."""
    objects: list[SchemaObject] = []

    for statement in statements:
        table = CREATE_TABLE.match(statement.text)
        if table:
            schema, name = split_identifier(table.group(2))
            objects.append(SchemaObject(kind="table", name=name, schema=schema))
            continue

        index = CREATE_INDEX.match(statement.text)
        if index:
            schema, name = split_identifier(index.group(2))
            table_schema, table_name = split_identifier(index.group(3))
            objects.append(
                SchemaObject(
                    kind="index",
                    name=name,
                    schema=schema or table_schema,
                    table=table_name,
                )
            )
            continue

        view = CREATE_VIEW.match(statement.text)
        if view:
            schema, name = split_identifier(view.group(3))
            objects.append(SchemaObject(kind="view", name=name, schema=schema))

    unique = []
    for obj in objects:
        if obj not in unique:
            unique.append(obj)
    return unique


def is_ddl(statements: list[Statement]) -> bool:
    """True if any statement is a structural (DDL) statement."""
    return any(statement.keyword in DDL_KEYWORDS for statement in statements)
