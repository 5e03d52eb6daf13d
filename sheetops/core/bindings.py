"""
Named column bindings resolved from header text.

Every classifier and writer locates its columns the same way: a binding lists
alias word patterns in priority order, and a header matches a pattern when all
of the pattern's words appear among the header's words. Resolution happens once
per header signature and is cached.
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from .errors import Malformed
from .schema import Record, TabSchema

_WORD = re.compile(r"[A-Z0-9]+")


def header_words(header: str) -> Tuple[str, ...]:
    return tuple(_WORD.findall(header.upper()))


@dataclass(frozen=True)
class ColumnBinding:
    name: str
    aliases: Tuple[str, ...]
    required: bool = True

    def patterns(self) -> Tuple[Tuple[str, ...], ...]:
        return tuple(header_words(alias) for alias in self.aliases)


SITE = ColumnBinding("site", ("SITE",))
START = ColumnBinding("start", ("START", "BEGIN"))
END = ColumnBinding("end", ("END", "UPTIME", "RESTORED"))
CAUSE = ColumnBinding("cause", ("CAUSE",))
ACTION_PLAN = ColumnBinding("action_plan", ("ACTION PLAN", "ACTION"))
PROJECT = ColumnBinding("project", ("PROJECT",), required=False)

DOWNTIME_BINDINGS = (SITE, START, END, CAUSE)
NO_UPTIME_BINDINGS = (START, END)
ESCALATION_BINDINGS = (CAUSE, ACTION_PLAN)


@dataclass(frozen=True)
class ResolvedBindings:
    """Binding name -> (header, column index) for one header signature."""
    columns: Dict[str, Tuple[str, int]]

    def header(self, name: str) -> str:
        return self.columns[name][0]

    def index(self, name: str) -> int:
        return self.columns[name][1]

    def has(self, name: str) -> bool:
        return name in self.columns

    def value(self, record: Record, name: str) -> str:
        if name not in self.columns:
            return ""
        return record.get(self.columns[name][0])


_cache: Dict[Tuple[Tuple[str, ...], Tuple[ColumnBinding, ...]], ResolvedBindings] = {}


def _match(binding: ColumnBinding, headers: Sequence[str], taken: set) -> Optional[str]:
    words = [set(header_words(h)) for h in headers]
    for pattern in binding.patterns():
        for position, header in enumerate(headers):
            if header in taken or not pattern:
                continue
            if set(pattern) <= words[position]:
                return header
    return None


def resolve_bindings(schema: TabSchema, bindings: Sequence[ColumnBinding]) -> ResolvedBindings:
    """Resolve ``bindings`` against ``schema``; raises Malformed if a required one is missing."""
    key = (schema.signature, tuple(bindings))
    cached = _cache.get(key)
    if cached is not None:
        return cached

    columns = {}
    taken = set()
    missing = []
    for binding in bindings:
        header = _match(binding, schema.headers, taken)
        if header is None:
            if binding.required:
                missing.append(binding.name)
            continue
        taken.add(header)
        columns[binding.name] = (header, schema.index_of(header))

    if missing:
        raise Malformed(
            f"Tab '{schema.tab_name}' has no column for {', '.join(missing)} "
            f"(headers in row {schema.header_row_index + 1}: {list(schema.headers)})"
        )

    resolved = ResolvedBindings(columns=columns)
    _cache[key] = resolved
    return resolved


def clear_binding_cache():
    _cache.clear()
