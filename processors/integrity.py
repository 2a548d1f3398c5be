"""Name dictionaries and consistency checks between the ledger and the COA."""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List

from core.chart_of_accounts import get_section, iter_leaves
from core.exceptions import ParseError

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_MISSING = "missing"
STATUS_SECTION_MISSING = "section_missing"


def write_name_dictionary(repository, field: str, path) -> int:
    """Write every distinct non-empty ``field`` value as a ``{name: ""}`` JSON object."""
    names = sorted(n for n in repository.distinct(field) if isinstance(n, str) and n.strip())
    logger.info(f"Count unique {field} names: {len(names)}")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump({name: "" for name in names}, fh, indent=2)
        fh.write("\n")
    logger.info(f"{field} names saved to {path}")
    return len(names)


def load_name_dictionary(path) -> List[str]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise ParseError(f"Cannot read name dictionary {path}: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(f"Name dictionary {path} must be a JSON object")
    return [name for name in data if name]


def _result(section: str, status: str, items: List[str]) -> Dict:
    return {"section": section, "status": status, "items": items}


def report_missing(names: Iterable[str], coa: list, section: str) -> Dict:
    """Ledger names that no leaf of ``section`` maps to."""
    nodes = get_section(coa, section)
    if nodes is None:
        logger.warning(f"{section} not found in COA")
        return _result(section, STATUS_SECTION_MISSING, [])

    known = set()
    for leaf in iter_leaves(nodes):
        known.update((leaf.name, leaf.ledger_key))
    missing = sorted({n for n in names if n and n not in known})

    if missing:
        logger.warning(f"Names missing from {section} ({len(missing)}): {', '.join(missing)}")
        return _result(section, STATUS_MISSING, missing)
    logger.info(f"All names exist in {section}")
    return _result(section, STATUS_OK, [])


def report_unknown(names: Iterable[str], coa: list, section: str) -> Dict:
    """Ledger keys referenced by ``section`` that never occur in the ledger."""
    nodes = get_section(coa, section)
    if nodes is None:
        logger.warning(f"{section} not found in COA")
        return _result(section, STATUS_SECTION_MISSING, [])

    known = {n for n in names if n}
    unknown = sorted({leaf.ledger_key for leaf in iter_leaves(nodes)} - known)

    if unknown:
        logger.warning(f"Entries in {section} but not in the ledger ({len(unknown)}): {', '.join(unknown)}")
        return _result(section, STATUS_MISSING, unknown)
    logger.info(f"All {section} entries exist in the ledger")
    return _result(section, STATUS_OK, [])
