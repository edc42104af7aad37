"""Output formatters for plans and apply results."""

import json

from rich.console import Console
from rich.text import Text
from rich.tree import Tree

from converge.models import Action, ApplyResult, DriftRecord, Outcome, Plan, RunResult

ACTION_STYLES = {
    Action.CREATE: "green",
    Action.UPDATE: "yellow",
    Action.REPLACE: "bold red",
    Action.DELETE: "red",
    Action.READ: "dim",
    Action.NOOP: "dim",
}

OUTCOME_STYLES = {
    Outcome.SUCCEEDED: "green",
    Outcome.PARTIAL: "bold red",
    Outcome.REPLACEMENT_REQUIRED: "yellow",
    Outcome.GONE: "dim",
}


def _escape_md_cell(value: str) -> str:
    """Escape characters that break markdown table cells."""
    return value.replace("|", "\\|").replace("\n", " ")


def _drift_entries(drift: DriftRecord | None) -> list[dict[str, object]]:
    if drift is None:
        return []
    entries = []
    for name in sorted(drift.drifted):
        if name in drift.only_desired:
            change = "added"
        elif name in drift.only_remote:
            change = "removed"
        else:
            change = "changed"
        entries.append(
            {
                "attribute": name,
                "change": change,
                "forces_replacement": name in drift.immutable,
            }
        )
    return entries


def _entry(address: str, item: ApplyResult | Plan) -> dict[str, object]:
    if isinstance(item, Plan):
        return {
            "address": address,
            "action": item.action.value,
            "id": item.identifier,
            "drift": _drift_entries(item.drift),
        }
    return {
        "address": address,
        "action": item.action.value,
        "outcome": item.outcome.value,
        "id": item.identifier,
        "status": str(item.status) if item.status is not None else None,
        "error": str(item.error) if item.error else None,
        "drift": _drift_entries(item.drift),
    }


def format_json(run: RunResult) -> str:
    """Format results as JSON."""
    resources = [_entry(address, item) for address, item in sorted(run.results.items())]
    changes = sum(1 for item in run.results.values() if _has_changes(item))
    return json.dumps(
        {
            "summary": {
                "total": len(run.results) + len(run.failed),
                "changed": changes,
                "failed": len(run.failed),
            },
            "resources": resources,
            "failed": run.failed,
        },
        indent=2,
    )


def format_markdown(run: RunResult) -> str:
    """Format results as Markdown."""
    if not run.results and not run.failed:
        return "No resources."

    lines = [
        f"## Reconciliation — {len(run.results)} resources, {len(run.failed)} failed",
        "",
        "| Resource | Action | Outcome | ID | Drift | Error |",
        "|----------|--------|---------|----|-------|-------|",
    ]
    for address, item in sorted(run.results.items()):
        entry = _entry(address, item)
        drift = ", ".join(
            f"{d['attribute']}{' (forces replacement)' if d['forces_replacement'] else ''}"
            for d in entry["drift"]
        )
        lines.append(
            f"| {_escape_md_cell(address)} | {entry['action']} | {entry.get('outcome') or '—'} "
            f"| `{entry['id'] or '—'}` | {_escape_md_cell(drift) or '—'} "
            f"| {_escape_md_cell(entry.get('error') or '—')} |"
        )
    for address in run.failed:
        lines.append(f"| {_escape_md_cell(address)} | — | failed | — | — | see logs |")

    lines.append("")
    return "\n".join(lines)


def format_table(run: RunResult) -> str:
    """Format results as a Rich tree view, returned as a string."""
    if not run.results and not run.failed:
        return "No resources."

    console = Console(record=True, width=120)
    tree = Tree("[bold]Reconciliation[/bold]")

    for address, item in sorted(run.results.items()):
        style = ACTION_STYLES.get(item.action, "dim")
        label = f"[{style}]{address}[/{style}] — {item.action.value}"
        if isinstance(item, ApplyResult):
            outcome_style = OUTCOME_STYLES.get(item.outcome, "dim")
            label += f" [{outcome_style}]{item.outcome.value}[/{outcome_style}]"
        if item.identifier:
            label += f" ({item.identifier})"
        branch = tree.add(Text.from_markup(label))

        for d in _drift_entries(item.drift):
            marker = " [bold red]forces replacement[/bold red]" if d["forces_replacement"] else ""
            branch.add(Text.from_markup(f"{d['attribute']}: {d['change']}{marker}"))
        if isinstance(item, ApplyResult) and item.error is not None:
            branch.add(Text(f"error: {item.error}", style="red"))

    for address in run.failed:
        tree.add(Text.from_markup(f"[bold red]{address}[/bold red] — failed"))

    console.print(tree)
    return console.export_text()


def _has_changes(item: ApplyResult | Plan) -> bool:
    if isinstance(item, Plan):
        return item.has_changes
    return item.action not in (Action.NOOP, Action.READ)
