# /// script
# dependencies = [
#     "keel-orm",
#     "rich",
# ]
# ///

import os
from typing import Annotated

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from keel import (
    BelongsTo,
    BelongsToMany,
    HasMany,
    KeelField,
    Model,
    connect,
    get_driver,
    transaction,
)

console = Console()


def show_step(title: str, code: str):
    """Utility to display a code snippet and its title."""
    console.print(f"\n[bold blue]>>> {title}[/bold blue]")
    syntax = Syntax(code, "python", theme="monokai", line_numbers=False)
    console.print(Panel(syntax, expand=False, border_style="dim"))


class Category(Model, table="categories"):
    id: Annotated[int | None, KeelField(primary_key=True)] = None
    name: str
    products: Annotated[list["Product"], HasMany()]


class Product(Model, table="products", soft_deletes=True):
    id: Annotated[int | None, KeelField(primary_key=True)] = None
    name: Annotated[str, KeelField(index=True)]
    price: float
    in_stock: bool = True
    sku: Annotated[str | None, KeelField(unique=True)] = None
    tags: list[str] = []
    deleted_at: str | None = None
    category: Annotated[Category, BelongsTo()]


class Actor(Model, table="actors", timestamps=False):
    id: Annotated[int | None, KeelField(primary_key=True)] = None
    name: str
    movies: Annotated[list["Movie"], BelongsToMany()]


class Movie(Model, table="movies", timestamps=False):
    id: Annotated[int | None, KeelField(primary_key=True)] = None
    title: str


async def run_demo():
    db_file = "demo.db"
    if os.path.exists(db_file):
        os.remove(db_file)

    console.print(Panel.fit("[bold green]Keel ORM Demo[/bold green]", border_style="bold green"))

    console.print(f"Connecting to {db_file}...")
    # connect() checks every declared relation and creates missing tables
    await connect(f"sqlite:{db_file}?mode=rwc", auto_migrate=True)

    console.print("Seeding initial data...")
    electronics = await Category.create(name="Electronics")
    appliances = await Category.create(name="Appliances")
    furniture = await Category.create(name="Furniture")

    data = [
        ("Laptop", 1200.0, electronics, True, "LPT-001", ["work"]),
        ("Smartphone", 800.0, electronics, True, "PHN-001", ["mobile"]),
        ("Headphones", 150.0, electronics, True, "HDP-001", ["audio", "mobile"]),
        ("Monitor", 300.0, electronics, False, "MON-001", ["work"]),
        ("Coffee Maker", 80.0, appliances, True, "COF-001", []),
        ("Toaster", 30.0, appliances, True, "TST-001", []),
        ("Desk Chair", 250.0, furniture, True, "CHR-001", ["work"]),
        ("Bookshelf", 120.0, furniture, True, "BSH-001", []),
    ]
    await Product.bulk_create(
        [
            Product(name=name, price=price, category_id=cat.id, in_stock=stock, sku=sku, tags=tags)
            for name, price, cat, stock, sku, tags in data
        ]
    )

    console.print("\n[bold yellow]--- Fluent Queries ---[/bold yellow]")

    show_step(
        "Operator expressions",
        "expensive = await Product.where(Product.price >= 500).all()",
    )
    expensive = await Product.where(Product.price >= 500).all()
    console.print(f"Expensive items: [cyan]{[p.name for p in expensive]}[/cyan]")

    show_step(
        "Grouped conditions",
        "await Product.query().where('in_stock', True)\n"
        "    .where_group(lambda q: q.where('price', '<', 100).or_where_group(\n"
        "        lambda g: g.where_json_contains('tags', 'work')))\n"
        "    .order_by('price', 'desc').all()",
    )
    picks = await (
        Product.query()
        .where("in_stock", True)
        .where_group(
            lambda q: q.where("price", "<", 100).or_where_group(
                lambda g: g.where_json_contains("tags", "work")
            )
        )
        .order_by("price", "desc")
        .all()
    )
    console.print(f"Picks: [cyan]{[p.name for p in picks]}[/cyan]")

    show_step(
        "Pagination",
        "page = await Product.query().order_by('price').paginate(3, page=2)",
    )
    page = await Product.query().order_by("price").paginate(3, page=2)
    console.print(
        f"Page {page.current_page}/{page.last_page} of {page.total}: "
        f"[cyan]{[p.name for p in page.data]}[/cyan]"
    )

    console.print("\n[bold yellow]--- Eager Loading ---[/bold yellow]")

    show_step(
        "One query per relation, however many parents",
        "categories = await Category.with_('products').all()",
    )
    categories = await Category.with_("products").all()
    table = Table("Category", "Products")
    for category in categories:
        table.add_row(category.name, ", ".join(p.name for p in category.products))
    console.print(table)

    show_step(
        "Constrained nested loading",
        "products = await Product.with_('category').where('price', '>', 200).all()",
    )
    for product in await Product.with_("category").where("price", ">", 200).all():
        console.print(f"[cyan]{product.name}[/cyan] in [green]{product.category.name}[/green]")

    console.print("\n[bold yellow]--- Many-to-Many ---[/bold yellow]")

    keanu = await Actor.create(name="Keanu Reeves")
    laurence = await Actor.create(name="Laurence Fishburne")
    matrix = await Movie.create(title="The Matrix")
    speed = await Movie.create(title="Speed")
    await get_driver().execute(
        "INSERT INTO actor_movie (actor_id, movie_id) VALUES (?, ?), (?, ?), (?, ?)",
        [keanu.id, matrix.id, keanu.id, speed.id, laurence.id, matrix.id],
    )

    show_step("Pivot-backed relation", "actors = await Actor.with_('movies').all()")
    for actor in await Actor.with_("movies").all():
        console.print(f"{actor.name}: [cyan]{[m.title for m in actor.movies]}[/cyan]")

    console.print("\n[bold yellow]--- Transactions and Soft Deletes ---[/bold yellow]")

    show_step(
        "Atomic transaction",
        "async with keel.transaction():\n"
        "    gaming = await Category.create(name='Gaming')\n"
        "    await Product.create(name='RTX 5090', category_id=gaming.id, ...)",
    )
    async with transaction():
        gaming = await Category.create(name="Gaming")
        await Product.create(name="RTX 5090", price=1999.99, category_id=gaming.id, sku="GPU-5090")
    console.print(f"Products after commit: [bold green]{await Product.query().count()}[/bold green]")

    show_step("Soft delete", "await toaster.soft_delete()")
    toaster = await Product.find("Toaster", key="name")
    await toaster.soft_delete()
    console.print(
        f"Trashed: [cyan]{[p.name for p in await Product.only_trashed().all()]}[/cyan], "
        f"live: {await Product.query().without_trashed().count()}"
    )

    show_step(
        "Refreshing an instance",
        "await Product.update(laptop.id, {'price': 999.0})\nawait laptop.refresh()",
    )
    laptop = await Product.find("Laptop", key="name")
    await Product.update(laptop.id, {"price": 999.0})
    await laptop.refresh()
    console.print(f"Laptop price after refresh: [bold green]${laptop.price}[/bold green]")

    console.print("\n[bold green]Demo complete![/bold green]")


if __name__ == "__main__":
    import asyncio

    asyncio.run(run_demo())
