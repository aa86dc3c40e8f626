from __future__ import annotations
import random
from datetime import datetime, timedelta
from typing import Sequence
from faker import Faker
from sqlalchemy.orm import Session

from techblog.models import (
    User, Post, PostTag, Comment, Product, ProductKey, Coupon, TrendingTopic, Guestbook
)
from techblog.services.auth import hash_password, make_initials
from techblog.services.posts import generate_excerpt, generate_slug

SEED = 1337
DEMO_PASSWORD = "password123"

fake = Faker()

CATEGORIES = ["Backend", "Frontend", "DevOps", "Databases", "Career", "AI"]
TAG_POOL = [
    "python", "fastapi", "sqlalchemy", "postgres", "redis", "docker", "kubernetes", "react",
    "typescript", "testing", "performance", "security", "linux", "git", "llm", "architecture",
]


def seed_random_generators(seed: int = SEED) -> None:
    """Seed random and the module Faker so demo data is reproducible."""
    random.seed(seed)
    Faker.seed(seed)
    fake.seed_instance(seed)
    fake.unique.clear()


def make_users(db: Session, n_users: int) -> list[User]:
    # one shared password hash keeps seeding fast
    password_hash = hash_password(DEMO_PASSWORD)
    users = []
    for _ in range(n_users):
        name = fake.unique.user_name()[:20]
        users.append(User(
            email=fake.unique.email(), name=name, password_hash=password_hash,
            avatar=make_initials(name), bio=fake.sentence(),
            created_at=fake.date_time_between(start_date="-90d", end_date="-61d"),
        ))
    db.add_all(users); db.flush()
    return users

def make_posts(db: Session, authors: Sequence[User], n_posts: int) -> list[Post]:
    posts: list[Post] = []
    for i in range(n_posts):
        title = fake.sentence(nb_words=random.randint(4, 8)).rstrip(".")
        content = "\n\n".join(fake.paragraphs(nb=random.randint(3, 8)))
        created = fake.date_time_between(start_date="-60d", end_date="now")
        p = Post(
            slug=f"{generate_slug(title) or 'post'}-{i + 1}", title=title, content=content,
            excerpt=generate_excerpt(content), category=random.choice(CATEGORIES),
            published=random.random() < 0.9, views=random.randint(0, 5000), likes=random.randint(0, 300),
            author_id=random.choice(authors).id, created_at=created, updated_at=created,
        )
        db.add(p); posts.append(p)
    db.flush()

    # 1-4 tags each, biased so a few tags dominate
    weights = [5 if t in ("python", "fastapi", "docker") else 1 for t in TAG_POOL]
    for p in posts:
        chosen = list(dict.fromkeys(random.choices(TAG_POOL, weights=weights, k=random.randint(1, 4))))
        for name in chosen:
            db.add(PostTag(post_id=p.id, name=name))
    db.flush()
    return posts

def make_comment_tree(db: Session, post: Post, users: Sequence[User],
                      max_roots=3, max_depth=3, max_children=3):
    """
    Generate a small random tree of comments for one post.
    """
    def make_node(parent_id: int | None, depth: int):
        if depth > max_depth: return
        # fewer children the deeper we go
        n_children = random.randint(0, max(0, max_children - depth + 1))
        for _ in range(n_children):
            when = post.created_at + timedelta(minutes=random.randint(1, 10*depth+5))
            c = Comment(
                post_id=post.id, author_id=random.choice(users).id, parent_id=parent_id,
                content=fake.sentence(), likes=random.randint(0, 25), created_at=when,
            )
            db.add(c); db.flush()
            make_node(c.id, depth + 1)

    for _ in range(random.randint(0, max_roots)):
        c = Comment(
            post_id=post.id, author_id=random.choice(users).id, parent_id=None,
            content=fake.sentence(), likes=random.randint(0, 50),
            created_at=post.created_at + timedelta(minutes=random.randint(1, 30)),
        )
        db.add(c); db.flush()
        make_node(c.id, 2)

def make_comments(db: Session, posts: Sequence[Post], users: Sequence[User], frac_with_threads=0.6):
    for p in posts:
        if random.random() < frac_with_threads:
            make_comment_tree(db, p, users)

def make_guestbook(db: Session, users: Sequence[User], n_entries: int = 20):
    for _ in range(n_entries):
        db.add(Guestbook(
            user_id=random.choice(users).id, message=fake.sentence(nb_words=12),
            created_at=fake.date_time_between(start_date="-30d", end_date="now"),
        ))
    db.flush()

def make_products(db: Session, keys_per_product: int = 10) -> list[Product]:
    products = [
        Product(name="Pro Membership (Monthly)", description="Member-only articles and downloads",
                price=19.9, type="membership", duration=30, features=["Member articles", "Source downloads"],
                stock=-1, sort_order=1),
        Product(name="Pro Membership (Yearly)", description="Twelve months of membership",
                price=199.0, type="membership", duration=365, features=["Member articles", "Priority support"],
                stock=-1, sort_order=2),
        Product(name="IDE License Key", description="One activation key", price=49.0, type="serial_key",
                features=["Lifetime activation"], stock=keys_per_product, sort_order=3),
        Product(name="Code Review Session", description="One hour of review", price=99.0, type="service",
                features=["1:1 call", "Written notes"], stock=-1, sort_order=4),
    ]
    db.add_all(products); db.flush()

    for product in products:
        if product.type != "serial_key":
            continue
        for _ in range(keys_per_product):
            db.add(ProductKey(product_id=product.id, key_value=fake.unique.bothify("????-####-????-####").upper()))
    db.flush()
    return products

def make_coupons(db: Session) -> list[Coupon]:
    now = datetime.utcnow()
    coupons = [
        Coupon(code="WELCOME10", name="Welcome discount", type="percentage", value=10, max_discount=20,
               total_count=100, start_time=now - timedelta(days=1), end_time=now + timedelta(days=90)),
        Coupon(code="SAVE5", name="Five off", type="fixed", value=5, min_amount=20,
               total_count=-1, start_time=now - timedelta(days=1), end_time=now + timedelta(days=30)),
    ]
    db.add_all(coupons); db.flush()
    return coupons

def make_topics(db: Session, users: Sequence[User], n_topics: int = 8) -> list[TrendingTopic]:
    topics = []
    now = datetime.utcnow()
    for i in range(n_topics):
        multiple = i % 3 == 0
        options = None
        if multiple:
            options = [{"id": f"opt_{j}", "text": fake.word().title(), "count": 0} for j in range(3)]
        t = TrendingTopic(
            title=fake.sentence(nb_words=6).rstrip("?.") + "?", description=fake.paragraph(),
            category=random.choice(CATEGORIES), vote_type="multiple" if multiple else "binary",
            options=options, tags=random.sample(TAG_POOL, 2), votes=0, heat=random.randint(0, 40),
            status="active", end_time=now + timedelta(hours=random.randint(1, 72)),
            proposed_by=random.choice(users).id,
        )
        db.add(t); topics.append(t)
    db.flush()
    return topics
