"""Command line client for the expense tracker API."""
import asyncio
import os
from pathlib import Path

import httpx
import typer
from rich.console import Console

from client.api_client import ApiError, ExpenseApiClient
from client.upload_flow import ReceiptUploadForm, SelectedFile
from client.views import expense_detail_panel, expense_list_table

app = typer.Typer(help="Expense tracker client", no_args_is_help=True)
console = Console()

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.getenv("EXPENSES_API_URL", DEFAULT_API_URL)


def _async_run(coro):
    """Run an async coroutine, turning API errors into a non-zero exit."""
    try:
        return asyncio.run(coro)
    except ApiError as e:
        console.print(f"[red]✗[/red] {e.message} ({e.status_code})")
        raise typer.Exit(code=1)
    except httpx.HTTPError as e:
        console.print(f"[red]✗[/red] Could not reach {_api_url()}: {e}")
        raise typer.Exit(code=1)


@app.command("list")
def list_command() -> None:
    """Show all expenses."""
    async def _run():
        async with ExpenseApiClient(_api_url()) as api:
            console.print(expense_list_table(await api.list_expenses()))

    _async_run(_run())


@app.command()
def show(expense_id: int = typer.Argument(..., help="Expense id")) -> None:
    """Show one expense, including a download link for its receipt."""
    async def _run():
        async with ExpenseApiClient(_api_url()) as api:
            console.print(expense_detail_panel(await api.get_expense(expense_id)))

    _async_run(_run())


@app.command()
def add(
    title: str = typer.Argument(..., help="3 to 100 characters"),
    amount: int = typer.Argument(..., help="Amount in the smallest currency unit"),
) -> None:
    """Record a new expense."""
    async def _run():
        async with ExpenseApiClient(_api_url()) as api:
            expense = await api.create_expense(title, amount)
            console.print(f"[green]✓[/green] Created expense #{expense.id}")
            console.print(expense_detail_panel(expense))

    _async_run(_run())


@app.command()
def upload(
    expense_id: int = typer.Argument(..., help="Expense to attach the receipt to"),
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Receipt image"),
) -> None:
    """Upload a receipt image and attach it to an expense."""
    async def _run() -> bool:
        async with ExpenseApiClient(_api_url()) as api:
            form = ReceiptUploadForm(api, expense_id, on_success=lambda: console.print("[green]✓[/green] Receipt attached"))
            form.select_file(SelectedFile.from_path(path))
            with console.status("Uploading…"):
                succeeded = await form.submit()
            if not succeeded:
                console.print(f"[red]✗[/red] {form.error}")
                return False
            # Refresh the detail view so the new signed receipt URL shows up
            console.print(expense_detail_panel(await api.get_expense(expense_id)))
            return True

    if not _async_run(_run()):
        raise typer.Exit(code=1)


@app.command()
def serve() -> None:
    """Run the API server."""
    from main import run

    run()


if __name__ == "__main__":
    app()
