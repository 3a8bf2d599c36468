"""
Terminal rendering shared by the local console channel and the operator client.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

console = Console()


def log(msg: str, level: str = "INFO"):
    """Log with timestamp and styled output."""
    timestamp = datetime.now().strftime("%H:%M:%S")
    styles = {
        "INFO": ("ℹ️", "bright_blue"),
        "OK": ("✅", "green"),
        "WARN": ("⚠️", "yellow"),
        "ERR": ("❌", "red bold"),
        "AGENT": ("🤖", "cyan"),
        "HUMAN": ("👤", "magenta"),
    }
    symbol, style = styles.get(level, ("•", "white"))
    console.print(f"[dim]{timestamp}[/dim] {symbol} [{style}]{escape(msg)}[/{style}]")


def render_request(data: Dict[str, Any], backlog: int = 0) -> None:
    """Show a single-question request with its shortcuts."""
    body = escape(data.get("prompt") or "")
    if data.get("context"):
        body = f"[dim]{escape(data['context'])}[/dim]\n\n{body}"
    title = "🤖 Agent asks"
    if backlog:
        title += f" ({backlog} more waiting)"
    console.print(Panel(body, title=title, border_style="cyan"))

    choices: Optional[List[Dict[str, str]]] = data.get("choices")
    if choices:
        table = Table(show_header=True, header_style="bold")
        table.add_column("#", style="cyan", width=4)
        table.add_column("Choice")
        table.add_column("Sends", style="dim")
        for index, choice in enumerate(choices, start=1):
            table.add_row(str(index), escape(choice.get("label", "")), escape(choice.get("value", "")))
        console.print(table)
    elif data.get("is_approval_question"):
        console.print("[green]y[/green] approve   [red]n[/red] reject   or type a reply")


def render_questions(data: Dict[str, Any]) -> None:
    """Show every sub-question of a multi-question request."""
    for index, question in enumerate(data.get("questions") or [], start=1):
        lines = [escape(question.get("question", ""))]
        for number, option in enumerate(question.get("options") or [], start=1):
            marker = " ⭐" if option.get("recommended") else ""
            line = f"  {number}. {escape(option.get('label', ''))}{marker}"
            if option.get("description"):
                line += f" [dim]— {escape(option['description'])}[/dim]"
            lines.append(line)
        hints = []
        if question.get("multi_select"):
            hints.append("several allowed")
        if question.get("allow_freeform_input"):
            hints.append("free text allowed")
        if hints:
            lines.append(f"[dim]({', '.join(hints)})[/dim]")
        console.print(Panel("\n".join(lines), title=f"{index}. {escape(question.get('header', ''))}",
                            border_style="magenta"))
