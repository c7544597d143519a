# cli.py - interactive terminal client for the storefront API
import os
import sys
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Dict, Any, Optional

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.prompt import IntPrompt, Confirm, Prompt
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich import box

from prompt_toolkit import prompt
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.styles import Style as PromptStyle

from sdk.storefront import StoreClient
import requests

console = Console()
c = StoreClient(base_url=os.environ.get("STOREFRONT_API", "http://127.0.0.1:8085"))

status_message = "Ready"
product_cache: List[Dict[str, Any]] = []

custom_style = PromptStyle.from_dict({
    'completion-menu.completion': 'bg:#008888 #ffffff',
    'completion-menu.completion.current': 'bg:#00aaaa #000000',
    'scrollbar.background': 'bg:#88aaaa',
    'scrollbar.button': 'bg:#222222',
})

STATUS_STYLES = {
    "PENDING": "yellow",
    "PROCESSING": "cyan",
    "SHIPPED": "blue",
    "DELIVERED": "green",
    "CANCELLED": "red",
}


def _money(value: Any) -> str:
    try:
        return f"${Decimal(str(value)):.2f}"
    except (InvalidOperation, TypeError):
        return "-"


def _error_text(e: Exception) -> str:
    """Pull the API's message / field errors out of an HTTPError."""
    if isinstance(e, requests.exceptions.HTTPError) and e.response is not None:
        try:
            body = e.response.json()
        except ValueError:
            return f"HTTP {e.response.status_code}"
        if "errors" in body:
            return "; ".join(f"{err['field']}: {err['message']}" for err in body["errors"])
        return f"HTTP {e.response.status_code}: {body.get('message', body)}"
    return str(e)


# ---------------------------
# Display helpers
# ---------------------------
def show_products(products: List[Dict[str, Any]], title: str = "📦 Products Catalog"):
    if not products:
        console.print("[italic yellow]No products found[/italic yellow]")
        return

    table = Table(title=title, box=box.ROUNDED, header_style="bold cyan", title_style="bold magenta",
                  show_lines=True)
    table.add_column("ID", style="dim", width=6)
    table.add_column("Name", style="bold", width=24)
    table.add_column("Price", justify="right", width=10)
    table.add_column("Stock", justify="right", width=8)
    table.add_column("Category", width=16)

    for p in products:
        stock = p.get("stock", 0)
        stock_text = f"[red]{stock}[/red]" if stock <= 10 else str(stock)
        table.add_row(str(p.get("id")), p.get("name", "N/A"), _money(p.get("price")), stock_text,
                      p.get("category") or "-")
    console.print(table)


def show_order(order: Dict[str, Any]):
    table = Table(box=box.ROUNDED, header_style="bold blue", show_lines=True)
    table.add_column("Product", style="bold", width=30)
    table.add_column("Qty", justify="right", width=6)
    table.add_column("Price", justify="right", width=10)
    table.add_column("Subtotal", justify="right", width=12)
    for it in order.get("items", []):
        subtotal = Decimal(str(it["price"])) * it["quantity"]
        table.add_row(it["product"]["name"], str(it["quantity"]), _money(it["price"]), _money(subtotal))

    status = order.get("status", "N/A")
    style = STATUS_STYLES.get(status, "white")
    title = f"🧾 Order #{order.get('id')} - [{style}]{status}[/{style}] - Total {_money(order.get('total_amount'))}"
    console.print(Panel(table, title=title, border_style="blue"))


def show_orders(orders: List[Dict[str, Any]], title: str = "📋 Orders"):
    if not orders:
        console.print("[italic yellow]No orders found[/italic yellow]")
        return

    table = Table(title=title, box=box.ROUNDED, header_style="bold yellow", title_style="bold yellow",
                  show_lines=True)
    table.add_column("Order", style="dim", width=8)
    table.add_column("Contents", width=40)
    table.add_column("Status", width=12)
    table.add_column("Total", justify="right", width=12)
    table.add_column("Created", width=20)

    for order in orders:
        items = order.get("items", [])
        names = [f"{it['product']['name']} x{it['quantity']}" for it in items[:3]]
        contents = ", ".join(names) if names else "No items"
        if len(items) > 3:
            contents += f" +{len(items) - 3} more"
        status = order.get("status", "N/A")
        style = STATUS_STYLES.get(status, "white")
        table.add_row(str(order.get("id")), contents, f"[{style}]{status}[/{style}]",
                      _money(order.get("total_amount")), (order.get("created_at") or "")[:19])
    console.print(table)


def show_analytics(a: Dict[str, Any]):
    summary = Table.grid(padding=(0, 3))
    summary.add_column(style="bold")
    summary.add_column(justify="right")
    summary.add_row("Users", str(a["total_users"]))
    summary.add_row("Products", str(a["total_products"]))
    summary.add_row("Orders", str(a["total_orders"]))
    summary.add_row("Pending orders", str(a["pending_orders"]))
    summary.add_row("Low stock products", str(a["low_stock_products"]))
    summary.add_row("Revenue", f"[green]{_money(a['total_revenue'])}[/green]")
    console.print(Panel(summary, title="📊 Dashboard", border_style="magenta"))

    top = Table(title="🏆 Top products", box=box.SIMPLE, header_style="bold")
    top.add_column("Product")
    top.add_column("Sold", justify="right")
    top.add_column("Stock", justify="right")
    for p in a.get("top_products", []):
        top.add_row(p["name"], str(p["total_sold"]), str(p["stock"]))
    console.print(top)

    monthly = a.get("monthly_revenue", [])
    if monthly:
        rev = Table(title="📅 Monthly revenue", box=box.SIMPLE, header_style="bold")
        rev.add_column("Month")
        rev.add_column("Revenue", justify="right")
        for m in monthly:
            rev.add_row(m["month"], _money(m["revenue"]))
        console.print(rev)


def show_status(message: str, is_success: bool = True):
    style = "green" if is_success else "red"
    return Panel.fit(f"[{style}]{message}[/{style}]", title="Status")


# ---------------------------
# API wrapper with exception handling
# ---------------------------
def try_api(fn, *args, success_msg: Optional[str] = None, **kwargs):
    """
    Calls fn(*args, **kwargs) behind a spinner.
    Returns the result, or None after printing the error.
    """
    global status_message
    try:
        with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                      transient=True) as progress:
            progress.add_task(description="Processing...", total=None)
            result = fn(*args, **kwargs)

        if success_msg:
            status_message = success_msg
            console.print(show_status(success_msg, True))
        return result
    except requests.exceptions.RequestException as e:
        status_message = f"Error: {_error_text(e)}"
        console.print(show_status(status_message, False))
        return None


# ---------------------------
# Autocompletion helpers
# ---------------------------
def get_product_completer():
    global product_cache
    if not product_cache:
        listing = try_api(c.list_products, limit=100) or {}
        product_cache = listing.get("products", [])
    ids = [str(p["id"]) for p in product_cache]
    return WordCompleter(ids, ignore_case=True, meta_dict={str(p["id"]): p["name"] for p in product_cache})


def prompt_with_autocomplete(message: str, completer=None, default: str = ""):
    return prompt(f"{message} ", completer=completer, style=custom_style, default=default)


def ask_int(message: str, completer=None) -> Optional[int]:
    raw = prompt_with_autocomplete(message, completer=completer).strip()
    try:
        return int(raw)
    except ValueError:
        console.print("[red]Please enter a numeric id.[/red]")
        return None


def ask_decimal(message: str, default: str = "10.00") -> Decimal:
    while True:
        raw = Prompt.ask(message, default=default)
        try:
            return Decimal(raw)
        except InvalidOperation:
            console.print("[red]Please enter a valid amount.[/red]")


def create_header():
    header = Table(show_header=False, box=box.ROUNDED)
    header.add_column("left", width=30)
    header.add_column("center", width=40)
    header.add_column("right", width=30)

    who = "[dim]not logged in[/dim]"
    if c.user:
        who = f"{c.user['email']} ([bold]{c.user['role']}[/bold])"
    header.add_row("🛍️ storefront", who, f"[dim]{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}[/dim]")
    return Panel(header, style="bold blue")


# ---------------------------
# Actions
# ---------------------------
def do_login():
    email = prompt_with_autocomplete("Email")
    password = Prompt.ask("Password", password=True)
    if try_api(c.login, email, password, success_msg=f"Logged in as {email}"):
        console.print(create_header())


def do_register():
    name = prompt_with_autocomplete("Name")
    email = prompt_with_autocomplete("Email")
    password = Prompt.ask("Password (min 6 chars)", password=True)
    try_api(c.register, name, email, password, success_msg=f"Account created for {email}")


def do_place_order():
    lines: List[Dict[str, int]] = []
    while True:
        pid = ask_int("Product ID", completer=get_product_completer())
        if pid is not None:
            qty = IntPrompt.ask("Quantity", default=1)
            lines.append({"product_id": pid, "quantity": qty})
        if not Confirm.ask("Add another product?", default=False):
            break
    if not lines:
        return None
    order = try_api(c.place_order, lines, success_msg="Order placed")
    if order:
        show_order(order)
    return order


def do_pay():
    order_id = ask_int("Order ID to pay")
    if order_id is None:
        return
    intent = try_api(c.create_payment_intent, order_id, success_msg="Payment intent created")
    if not intent:
        return
    console.print(Panel.fit(
        f"Payment intent: [bold]{intent['payment_intent_id']}[/bold]\n"
        f"Amount: [bold]{_money(intent['order']['total_amount'])}[/bold]\n"
        "Complete the charge with the client secret, then confirm here.",
        title="💳 Payment"))
    if Confirm.ask("Confirm payment now?"):
        order = try_api(c.confirm_payment, order_id, intent["payment_intent_id"],
                        success_msg="Payment confirmed")
        if order:
            show_order(order)


def do_admin_status():
    order_id = ask_int("Order ID")
    if order_id is None:
        return
    status = prompt_with_autocomplete("New status", completer=WordCompleter(list(STATUS_STYLES))).strip().upper()
    order = try_api(c.admin_set_status, order_id, status, success_msg=f"Order {order_id} set to {status}")
    if order:
        show_order(order)


def do_create_product():
    name = prompt_with_autocomplete("Product name")
    description = prompt_with_autocomplete("Description")
    price = ask_decimal("💰 Price")
    stock = IntPrompt.ask("📦 Stock", default=1)
    category = prompt_with_autocomplete("🏷️ Category", default="general")
    product = try_api(c.create_product, name, description, price, stock, category,
                      success_msg=f"Product '{name}' created")
    if product:
        show_products([product])


# ---------------------------
# Main menu
# ---------------------------
def menu():
    global status_message, product_cache

    console.clear()
    console.print(create_header())

    while True:
        menu_table = Table.grid(padding=(0, 2))
        menu_table.add_column("Key", style="bold cyan", width=4)
        menu_table.add_column("Option", width=30)
        menu_table.add_column("Key", style="bold cyan", width=4)
        menu_table.add_column("Option", width=30)

        options = [
            ("1", "📦 List products", "8", "📋 My orders"),
            ("2", "🔍 Search products", "9", "❌ Cancel order"),
            ("3", "ℹ️ Product details", "10", "💳 Pay for order"),
            ("4", "🔑 Log in", "11", "📊 Admin dashboard"),
            ("5", "📝 Register", "12", "⚠️ Admin low stock"),
            ("6", "🚪 Log out", "13", "🔄 Admin set order status"),
            ("7", "🛒 Place order", "14", "➕ Admin create product"),
            ("", "", "q", "👋 Quit"),
        ]
        for row in options:
            menu_table.add_row(*row)
        console.print(Panel(menu_table, title="📋 Menu", border_style="yellow"))

        choice = prompt_with_autocomplete(
            "\nChoose an option",
            completer=WordCompleter([str(i) for i in range(1, 15)] + ["q", "quit", "exit"])
        ).strip()

        if choice == "1":
            listing = try_api(c.list_products, limit=50, success_msg="Products loaded")
            if listing is not None:
                product_cache = listing["products"]
                show_products(product_cache)

        elif choice == "2":
            term = prompt_with_autocomplete("Search term")
            listing = try_api(c.list_products, search=term, success_msg=f"Search for '{term}' completed")
            if listing is not None:
                show_products(listing["products"], title=f"🔍 Results for '{term}'")

        elif choice == "3":
            pid = ask_int("Product ID", completer=get_product_completer())
            if pid is not None:
                product = try_api(c.get_product, pid)
                if product:
                    show_products([product])
                    console.print(Panel(product.get("description") or "", title=product["name"]))

        elif choice == "4":
            do_login()

        elif choice == "5":
            do_register()

        elif choice == "6":
            c.logout()
            status_message = "Logged out"
            console.print(show_status(status_message))

        elif choice == "7":
            do_place_order()
            product_cache = []

        elif choice == "8":
            listing = try_api(c.list_orders, success_msg="Orders loaded")
            if listing is not None:
                show_orders(listing["orders"])

        elif choice == "9":
            order_id = ask_int("Order ID to cancel")
            if order_id is not None and Confirm.ask(f"Cancel order {order_id}?"):
                order = try_api(c.cancel_order, order_id, success_msg=f"Order {order_id} cancelled")
                if order:
                    show_order(order)
                product_cache = []

        elif choice == "10":
            do_pay()

        elif choice == "11":
            a = try_api(c.analytics, success_msg="Dashboard loaded")
            if a:
                show_analytics(a)

        elif choice == "12":
            threshold = IntPrompt.ask("Threshold", default=10)
            products = try_api(c.low_stock, threshold, success_msg="Low stock loaded")
            if products is not None:
                show_products(products, title=f"⚠️ Stock <= {threshold}")

        elif choice == "13":
            do_admin_status()

        elif choice == "14":
            do_create_product()
            product_cache = []

        elif choice.lower() in ("q", "quit", "exit"):
            if Confirm.ask("Are you sure you want to quit?"):
                console.print(Panel.fit("[bold green]Thanks for shopping! 👋[/bold green]", title="Goodbye"))
                sys.exit(0)

        console.print()
        console.rule(style="dim")


if __name__ == "__main__":
    try:
        menu()
    except KeyboardInterrupt:
        console.print("\n\n[bold red]Interrupted by user[/bold red]")
        sys.exit(1)
