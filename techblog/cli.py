# techblog/cli.py
from typing import Optional

import typer
from sqlalchemy.exc import SQLAlchemyError

from techblog.config import configure_logging
from techblog.db import get_session, init_db
from techblog.errors import ServiceError
from techblog.models import Post
from techblog.services import seeder
from techblog.services.comments import get_comment_tree
from techblog.services.fulfillment import mark_order_paid
from techblog.services.setup import create_first_admin
from techblog.services.shop import get_order_by_no
from techblog.services.trending import expire_topics, list_topics

app = typer.Typer(help="TechBlog management CLI")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    configure_logging("DEBUG" if verbose else "INFO")


@app.command("init-db")
def init_db_cmd():
    """Create all database tables."""
    try:
        init_db()
    except SQLAlchemyError as e:
        typer.echo(f"❌ Could not create tables: {e}", err=True)
        raise typer.Exit(1)
    typer.echo("✓ Database tables created")


@app.command("create-admin")
def create_admin_cmd(
    email: Optional[str] = typer.Option(None, help="Admin email (defaults to ADMIN_EMAIL)"),
    password: Optional[str] = typer.Option(None, help="Admin password (defaults to ADMIN_PASSWORD)"),
    name: Optional[str] = typer.Option(None, help="Display name (defaults to ADMIN_NAME)"),
):
    """Create the first administrator account."""
    init_db()
    try:
        with get_session() as db:
            admin = create_first_admin(db, email, password, name)
            typer.echo(f"✓ Administrator created: {admin.name} <{admin.email}>")
    except ServiceError as e:
        typer.echo(f"❌ {e.message}", err=True)
        raise typer.Exit(1)


@app.command("seed")
def seed_cmd(
    users: int = typer.Option(20, help="Number of users"),
    posts: int = typer.Option(40, help="Number of posts"),
    topics: int = typer.Option(8, help="Number of trending topics"),
    keys: int = typer.Option(10, help="Serial keys per key product"),
):
    """Populate the database with demo data."""
    init_db()
    seeder.seed_random_generators()

    with get_session() as db:
        us = seeder.make_users(db, users)
        ps = seeder.make_posts(db, us, posts)
        seeder.make_comments(db, ps, us, frac_with_threads=0.6)
        seeder.make_guestbook(db, us)
        seeder.make_products(db, keys_per_product=keys)
        seeder.make_coupons(db)
        seeder.make_topics(db, us, topics)
    typer.echo(f"Seed complete: users={users}, posts={posts}, topics={topics}")
    typer.echo(f"Demo password for every seeded user: {seeder.DEMO_PASSWORD}")


def _print_tree(nodes, indent: int = 0) -> None:
    for node in nodes:
        author = node["author"]["name"] if node.get("author") else "?"
        prefix = "  " * indent + ("└─ " if indent else "• ")
        typer.echo(f"{prefix}[{node['id']}] {author}: {node['content'][:60]} (♥ {node['likes']})")
        _print_tree(node.get("replies", []), indent + 1)


@app.command("comments")
def comments_cmd(
    slug: str = typer.Argument(..., help="Slug of the post"),
    page: int = typer.Option(1, "--page", "-p", min=1),
    limit: int = typer.Option(20, "--limit", "-l", min=1, max=100),
):
    """Print a post's comment tree."""
    with get_session() as db:
        post = db.query(Post).filter(Post.slug == slug).first()
        if post is None:
            typer.echo(f"❌ Post not found: {slug}", err=True)
            raise typer.Exit(1)
        tree = get_comment_tree(db, post.id, page=page, limit=limit)

        typer.echo(f"\n💬 Comments on '{post.title}' (page {tree.page}, {tree.total} top-level):")
        typer.echo("─" * 50)
        if not tree.comments:
            typer.echo("No comments yet")
            return
        _print_tree(tree.comments)
        if tree.has_hidden_comments:
            typer.echo(f"\n⚠️  Some replies are deeper than max depth {tree.max_depth} and are hidden")


@app.command("trending")
def trending_cmd(
    sort_by: str = typer.Option("votes", "--sort", "-s", help="votes, heat or comments"),
    category: Optional[str] = typer.Option(None, "--category", "-c"),
):
    """List active trending topics."""
    with get_session() as db:
        topics = list_topics(db, sort_by=sort_by, category=category)

    if not topics:
        typer.echo("No active topics")
        return

    typer.echo(f"\n🔥 {len(topics)} active topics (by {sort_by}):")
    typer.echo("─" * 50)
    for i, t in enumerate(topics, 1):
        typer.echo(
            f"{i:2d}. {t['title'][:40]:<40} votes={t['votes']:<4} heat={t['heat']:<4} "
            f"comments={t['commentCount']:<3} {t['hoursLeft']}h left"
        )


@app.command("expire-topics")
def expire_topics_cmd():
    """Close active topics whose voting window has ended."""
    with get_session() as db:
        closed = expire_topics(db)
    typer.echo(f"✓ Closed {closed} expired topics")


@app.command("mark-paid")
def mark_paid_cmd(
    order_no: str = typer.Argument(..., help="Order number, e.g. ORD20240101ABCDEFGH"),
    transaction_id: Optional[str] = typer.Option(None, "--transaction-id", "-t"),
    method: str = typer.Option("manual", "--method", "-m", help="Payment method to record"),
):
    """Fulfil a pending order by hand."""
    try:
        with get_session() as db:
            order = get_order_by_no(db, order_no)
            result = mark_order_paid(db, order_id=order.id, payment_method=method,
                                     transaction_id=transaction_id, remark="Marked paid from CLI",
                                     idempotent=False)
    except ServiceError as e:
        typer.echo(f"❌ {e.message}", err=True)
        raise typer.Exit(1)

    typer.echo(f"✓ Order {order_no} is now {result.status}")
    if result.product_key:
        typer.echo(f"Product key: {result.product_key}")


if __name__ == "__main__":
    app()
