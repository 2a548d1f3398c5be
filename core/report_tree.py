from typing import Callable, Dict, List, Optional, Sequence

from core.chart_of_accounts import TRANSFERS_GROUP, Group, Leaf, Node, transfer_keys
from core.exceptions import ValidationError

UNREALIZED_GL_CATEGORY = "Unrealized G/L"
TRANSFER_MODES = ("include", "exclude", "only")

# [currency, rawBalance, fxRate, balanceInUSD] for an account with no records.
EMPTY_BALANCE = (None, 0, None, 0)


def fold(
    nodes: Sequence[Node],
    leaf_value: Callable[[Leaf], object],
    amount_of: Callable[[object], float],
    *,
    total_field: str,
    keep: Optional[Callable[[Node], bool]] = None,
    prune_empty: Optional[Callable[[Group], bool]] = None,
) -> List[Dict]:
    """Resolve a COA tree into report nodes.

    Leaves become ``{name, value, <total_field>}``; groups become
    ``{name, <total_field>, children}`` where the total is the sum of the
    children that survived ``keep``. A group for which ``prune_empty`` holds
    is dropped when none of its children survived.
    """
    out = []
    for node in nodes:
        if keep is not None and not keep(node):
            continue

        if isinstance(node, Leaf):
            value = leaf_value(node)
            out.append({"name": node.name, "value": value, total_field: amount_of(value)})
            continue

        children = fold(
            node.children,
            leaf_value,
            amount_of,
            total_field=total_field,
            keep=keep,
            prune_empty=prune_empty,
        )
        if not children and prune_empty is not None and prune_empty(node):
            continue
        total = sum(child[total_field] for child in children)
        out.append({"name": node.name, total_field: total, "children": children})
    return out


def balance_sheet_tree(nodes: Sequence[Node], balances: Dict[str, Sequence]) -> List[Dict]:
    return fold(
        nodes,
        lambda leaf: list(balances.get(leaf.ledger_key, EMPTY_BALANCE)),
        lambda value: value[3],
        total_field="totalUSD",
    )


def cash_flow_filter(nodes: Sequence[Node], transfers: str = "exclude", include_unrealized: bool = False):
    """Build the (roots, keep, prune_empty) triple for a cash flow transfer policy."""
    if transfers not in TRANSFER_MODES:
        raise ValidationError(f"transfers must be one of {', '.join(TRANSFER_MODES)}")

    transfer_set = transfer_keys(nodes)
    excluded = set() if include_unrealized else {UNREALIZED_GL_CATEGORY}

    def is_transfer(leaf: Leaf) -> bool:
        return leaf.name == TRANSFERS_GROUP or leaf.ledger_key in transfer_set or leaf.name in transfer_set

    def keep(node: Node) -> bool:
        if node.name in excluded:
            return False
        if isinstance(node, Group):
            return True
        if node.ledger_key in excluded:
            return False
        if transfers == "only":
            return is_transfer(node)
        if transfers == "exclude":
            return not is_transfer(node)
        return True

    def prune_empty(group: Group) -> bool:
        return transfers == "only" and group.name != TRANSFERS_GROUP

    roots = [n for n in nodes if not (transfers == "exclude" and n.name == TRANSFERS_GROUP)]
    return roots, keep, prune_empty


def cash_flow_tree(
    nodes: Sequence[Node],
    totals: Dict[str, float],
    transfers: str = "exclude",
    include_unrealized: bool = False,
) -> List[Dict]:
    roots, keep, prune_empty = cash_flow_filter(nodes, transfers, include_unrealized)
    return fold(
        roots,
        lambda leaf: totals.get(leaf.ledger_key, 0.0),
        lambda value: value,
        total_field="total",
        keep=keep,
        prune_empty=prune_empty,
    )
