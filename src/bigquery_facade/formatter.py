from typing import Any, Dict, List, Optional, Sequence


def _format_cell(value: Any) -> str:
    if value is None:
        return "NULL"
    return str(value).replace("\n", " ").replace("|", "\\|")


def format_query_results(
    rows: Optional[Sequence[Dict[str, Any]]],
    max_rows: Optional[int] = None,
) -> str:
    """
    Render query rows as a Markdown table.

    Columns come from the first row in order; keys first seen in later rows
    are appended. NULL marks missing or null values.
    """
    if rows is None:
        return "No results or invalid result format."
    if not rows:
        return "Query succeeded but returned no data."

    columns: List[str] = []
    for row in rows:
        for key in row.keys():
            if key not in columns:
                columns.append(key)

    shown = rows if max_rows is None else rows[:max_rows]
    lines = [
        " | ".join(columns),
        " | ".join("---" for _ in columns),
    ]
    for row in shown:
        lines.append(" | ".join(_format_cell(row.get(col)) for col in columns))

    if len(shown) < len(rows):
        lines.append("")
        lines.append(f"*Showing {len(shown)} of {len(rows)} rows.*")
    return "\n".join(lines)
