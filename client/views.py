"""Terminal list and detail views for expenses."""
from typing import List

from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from models.expense import Expense


def format_amount(amount: int) -> str:
    """Amounts are stored in the smallest currency unit."""
    return f"{amount / 100:,.2f}"


def expense_list_table(expenses: List[Expense]) -> Table:
    table = Table(title="Expenses", show_lines=False)
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Title")
    table.add_column("Amount", justify="right", style="green")
    table.add_column("Receipt", justify="center")
    for expense in expenses:
        table.add_row(
            str(expense.id),
            expense.title,
            format_amount(expense.amount),
            "yes" if expense.file_url else "-",
        )
    if not expenses:
        table.caption = "No expenses yet."
    return table


def expense_detail_panel(expense: Expense) -> Panel:
    body = Text()
    body.append("Title:   ", style="bold")
    body.append(f"{expense.title}\n")
    body.append("Amount:  ", style="bold")
    body.append(f"{format_amount(expense.amount)}\n")
    body.append("Receipt: ", style="bold")
    if expense.file_url:
        body.append(expense.file_url, style=f"link {expense.file_url}")
    else:
        body.append("none uploaded", style="dim")
    return Panel(body, title=f"Expense #{expense.id}", expand=False)
