"""Table load ordering from foreign-key dependencies.

Referenced tables must be created and loaded before the tables that
reference them.  Circular references are common in real schemas and are not
an error: the back-edge that closes a cycle is skipped and the traversal
continues, so every table is still emitted exactly once.

Usage:
    from sqlserver_migrator.schema.ordering import build_dependency_map, resolve_table_order

    deps = build_dependency_map(tables, [("dbo.order_items", "dbo.orders")])
    order = resolve_table_order(tables, deps)
"""

from collections.abc import Iterable, Iterator, Mapping


def build_dependency_map(
    tables: Iterable[str],
    edges: Iterable[tuple[str, str]],
) -> dict[str, list[str]]:
    """Build the table -> referenced tables adjacency map.

    Only edges whose two ends are both in ``tables`` are kept.
    Self-references and duplicate edges are dropped.

    Args:
        tables: Fully-qualified table names.
        edges: ``(dependent, referenced)`` pairs, one per foreign key.

    Returns:
        Dict mapping every table to the list of tables it references, in
        first-seen edge order.

    Example:
        >>> build_dependency_map(["a", "b"], [("a", "b"), ("a", "a"), ("a", "zz")])
        {'a': ['b'], 'b': []}
    """
    dependencies: dict[str, list[str]] = {t: [] for t in tables}

    for dependent, referenced in edges:
        if dependent == referenced:
            continue
        if dependent not in dependencies or referenced not in dependencies:
            continue
        if referenced not in dependencies[dependent]:
            dependencies[dependent].append(referenced)

    return dependencies


def resolve_table_order(
    tables: Iterable[str],
    dependencies: Mapping[str, Iterable[str]],
) -> list[str]:
    """Topological sort of tables by FK dependencies.

    Depth-first post-order traversal: each table is emitted after every
    table it references.  Roots are visited in input order, so tables with
    no relationships keep their input order.

    Args:
        tables: Fully-qualified table names, in the preferred order.
        dependencies: Table -> tables it references.  Entries for tables
            outside ``tables`` are ignored.

    Returns:
        A permutation of ``tables`` with referenced tables first.
    """
    table_list = list(dict.fromkeys(tables))
    table_set = set(table_list)

    sorted_tables: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def references(table: str) -> Iterator[str]:
        return (d for d in dependencies.get(table, ()) if d in table_set and d != table)

    # Explicit stack so long FK chains don't hit the recursion limit
    for root in table_list:
        if root in visited:
            continue
        visiting.add(root)
        stack = [(root, references(root))]
        while stack:
            table, pending = stack[-1]
            for dep in pending:
                # Skip finished tables and back-edges (cycles)
                if dep in visited or dep in visiting:
                    continue
                visiting.add(dep)
                stack.append((dep, references(dep)))
                break
            else:
                stack.pop()
                visiting.discard(table)
                visited.add(table)
                sorted_tables.append(table)

    return sorted_tables
