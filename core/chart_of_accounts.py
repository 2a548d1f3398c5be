"""Loads the declarative chart of accounts into a tree of Leaf and Group nodes.

The COA file is a JSON array. One element is keyed ``"Balance Sheet Accounts"``,
another ``"Profit & Loss Accounts"``. Each section is a list whose items are
either a plain string (a leaf named after its ledger account/category) or an
object mapping a display name to:

- a string: a leaf whose ledger key is that string (empty means "use the name"),
- a list: a group of nested items.
"""

import json
import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Set, Tuple, Union

from core.exceptions import ParseError

logger = logging.getLogger(__name__)

TRANSFERS_GROUP = "Transfers"


@dataclass(frozen=True)
class Leaf:
    name: str
    ledger_key: str


@dataclass(frozen=True)
class Group:
    name: str
    children: Tuple["Node", ...]


Node = Union[Leaf, Group]


def load_coa(path) -> list:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as e:
        raise ParseError(f"Cannot read chart of accounts {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ParseError(f"Chart of accounts {path} is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise ParseError(f"Chart of accounts {path} must be a JSON array")
    return data


def get_section(coa: list, section: str) -> Optional[List[Node]]:
    """Parsed nodes of ``section``, or None when the COA has no such section."""
    for item in coa:
        if isinstance(item, dict) and section in item:
            return parse_section(item[section])
    return None


def parse_section(entries) -> List[Node]:
    if not isinstance(entries, list):
        raise ParseError(f"COA entries must be a list, got {type(entries).__name__}")

    nodes: List[Node] = []
    for entry in entries:
        if entry is None:
            continue
        if isinstance(entry, str):
            name = entry.strip()
            if name:
                nodes.append(Leaf(name, name))
        elif isinstance(entry, dict):
            for name, value in entry.items():
                node = _parse_entry(name, value)
                if node is not None:
                    nodes.append(node)
        else:
            raise ParseError(f"Unsupported COA entry: {entry!r}")
    return nodes


def _parse_entry(name, value) -> Optional[Node]:
    name = name.strip() if isinstance(name, str) else ""
    if not name:
        return None
    if isinstance(value, list):
        return Group(name, tuple(parse_section(value)))
    if isinstance(value, dict):
        raise ParseError(f"COA entry {name!r} must map to a string or a list")
    if isinstance(value, str) and value.strip():
        return Leaf(name, value.strip())
    return Leaf(name, name)


def iter_leaves(nodes) -> Iterator[Leaf]:
    for node in nodes:
        if isinstance(node, Leaf):
            yield node
        else:
            yield from iter_leaves(node.children)


def ledger_keys(nodes) -> Set[str]:
    return {leaf.ledger_key for leaf in iter_leaves(nodes)}


def transfer_keys(nodes) -> Set[str]:
    """Ledger keys of every leaf that sits under a group named Transfers."""
    keys: Set[str] = set()
    for node in nodes:
        if isinstance(node, Group):
            if node.name == TRANSFERS_GROUP:
                keys |= ledger_keys(node.children)
            else:
                keys |= transfer_keys(node.children)
    return keys
