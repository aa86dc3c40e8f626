from datetime import datetime
from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(64), nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    avatar = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    is_banned = Column(Boolean, nullable=False, default=False)
    banned_at = Column(DateTime, nullable=True)
    banned_reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    posts = relationship("Post", back_populates="author", passive_deletes=True)
    comments = relationship("Comment", back_populates="author", passive_deletes=True)
    orders = relationship("Order", back_populates="user", passive_deletes=True)
    membership = relationship("UserMembership", back_populates="user", uselist=False, passive_deletes=True)

class Post(Base):
    __tablename__ = "posts"
    id = Column(Integer, primary_key=True)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    excerpt = Column(Text, nullable=True)
    category = Column(String(64), nullable=True, index=True)
    cover_image = Column(String(512), nullable=True)
    published = Column(Boolean, nullable=False, default=True)
    views = Column(Integer, nullable=False, default=0)
    likes = Column(Integer, nullable=False, default=0)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    author = relationship("User", back_populates="posts")
    tags = relationship("PostTag", back_populates="post", cascade="all, delete-orphan", passive_deletes=True)
    comments = relationship("Comment", back_populates="post", cascade="all, delete-orphan", passive_deletes=True)
    post_likes = relationship("PostLike", cascade="all, delete-orphan", passive_deletes=True)
    bookmarks = relationship("PostBookmark", cascade="all, delete-orphan", passive_deletes=True)

Index("idx_posts_created", Post.created_at.desc())
Index("idx_posts_views", Post.views.desc())

class PostTag(Base):
    __tablename__ = "post_tags"
    id = Column(Integer, primary_key=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(64), nullable=False, index=True)

    post = relationship("Post", back_populates="tags")

    __table_args__ = (UniqueConstraint("post_id", "name", name="uq_post_tag"),)

class PostLike(Base):
    __tablename__ = "post_likes"
    id = Column(Integer, primary_key=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("post_id", "user_id", name="uq_post_like"),)

class PostBookmark(Base):
    __tablename__ = "post_bookmarks"
    id = Column(Integer, primary_key=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("post_id", "user_id", name="uq_post_bookmark"),)

class Comment(Base):
    __tablename__ = "comments"
    id = Column(Integer, primary_key=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("comments.id", ondelete="CASCADE"), nullable=True, index=True)
    content = Column(Text, nullable=False)
    likes = Column(Integer, nullable=False, default=0)
    is_recalled = Column(Boolean, nullable=False, default=False)
    recalled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    post = relationship("Post", back_populates="comments")
    author = relationship("User", back_populates="comments")
    parent = relationship("Comment", remote_side=[id], back_populates="replies")
    replies = relationship("Comment", back_populates="parent", cascade="all, delete-orphan", passive_deletes=True)
    comment_likes = relationship("CommentLike", cascade="all, delete-orphan", passive_deletes=True)

Index("idx_comments_post_created", Comment.post_id, Comment.created_at)

class CommentLike(Base):
    __tablename__ = "comment_likes"
    id = Column(Integer, primary_key=True)
    comment_id = Column(Integer, ForeignKey("comments.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("comment_id", "user_id", name="uq_comment_like"),)

class Guestbook(Base):
    __tablename__ = "guestbooks"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User")

class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False)
    type = Column(String(32), nullable=False)  # serial_key | membership | service
    duration = Column(Integer, nullable=True)  # days, membership only
    features = Column(JSON, nullable=True)
    image = Column(String(512), nullable=True)
    stock = Column(Integer, nullable=False, default=-1)  # -1 = unlimited
    sort_order = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, default="active")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    keys = relationship("ProductKey", back_populates="product", cascade="all, delete-orphan", passive_deletes=True)

class ProductKey(Base):
    __tablename__ = "product_keys"
    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    key_value = Column(String(255), unique=True, nullable=False)
    status = Column(String(16), nullable=False, default="available")  # available | sold | used
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    sold_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    product = relationship("Product", back_populates="keys")

Index("idx_product_keys_product_status", ProductKey.product_id, ProductKey.status)

class Coupon(Base):
    __tablename__ = "coupons"
    id = Column(Integer, primary_key=True)
    code = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(16), nullable=False)  # percentage | fixed
    value = Column(Float, nullable=False)
    min_amount = Column(Float, nullable=False, default=0)
    max_discount = Column(Float, nullable=True)
    total_count = Column(Integer, nullable=False, default=-1)  # -1 = unlimited
    used_count = Column(Integer, nullable=False, default=0)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(Boolean, nullable=False, default=True)  # enabled
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True)
    order_no = Column(String(32), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)
    amount = Column(Float, nullable=False)
    original_amount = Column(Float, nullable=True)
    discount_amount = Column(Float, nullable=False, default=0)
    status = Column(String(16), nullable=False, default="pending", index=True)
    payment_method = Column(String(32), nullable=True)
    payment_time = Column(DateTime, nullable=True)
    transaction_id = Column(String(128), nullable=True)
    product_key = Column(String(255), nullable=True)
    remark = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="orders")
    product = relationship("Product")
    coupon = relationship("Coupon")
    keys = relationship("ProductKey", passive_deletes=True)

class UserMembership(Base):
    __tablename__ = "user_memberships"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    type = Column(String(16), nullable=False)  # monthly | yearly
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    status = Column(String(16), nullable=False, default="active")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="membership")

class PaymentChannel(Base):
    __tablename__ = "payment_channels"
    id = Column(Integer, primary_key=True)
    code = Column(String(32), unique=True, nullable=False)
    enabled = Column(Boolean, nullable=False, default=False)
    config = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

class TrendingTopic(Base):
    __tablename__ = "trending_topics"
    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(64), nullable=False, default="General", index=True)
    vote_type = Column(String(16), nullable=False, default="binary")  # binary | multiple
    options = Column(JSON, nullable=True)
    tags = Column(JSON, nullable=True)
    votes = Column(Integer, nullable=False, default=0)
    heat = Column(Integer, nullable=False, default=1)
    status = Column(String(16), nullable=False, default="active", index=True)
    end_time = Column(DateTime, nullable=False)
    proposed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    proposer = relationship("User")
    topic_votes = relationship("TopicVote", cascade="all, delete-orphan", passive_deletes=True)
    comments = relationship("TopicComment", back_populates="topic", cascade="all, delete-orphan",
                            passive_deletes=True, order_by="TopicComment.created_at.desc()")

class TopicVote(Base):
    __tablename__ = "topic_votes"
    id = Column(Integer, primary_key=True)
    topic_id = Column(Integer, ForeignKey("trending_topics.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    direction = Column(String(8), nullable=True)  # up | down, binary topics
    option_id = Column(String(32), nullable=True)  # multiple-choice topics
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("topic_id", "user_id", name="uq_topic_vote"),)

class TopicComment(Base):
    __tablename__ = "topic_comments"
    id = Column(Integer, primary_key=True)
    topic_id = Column(Integer, ForeignKey("trending_topics.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    topic = relationship("TrendingTopic", back_populates="comments")
    user = relationship("User")

class SystemSetting(Base):
    __tablename__ = "system_settings"
    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=False, default="")
    description = Column(String(255), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
