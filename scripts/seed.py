"""Database seeder for local development.

Creates an admin account, a handful of users, posts with tags in every
status and a three-level comment thread on each published post.

    python -m scripts.seed --small
"""
import argparse
import asyncio
import random
import time
from datetime import datetime, timedelta, timezone

from blog_api.auth import hash_password
from blog_api.database import Base, engine, transactional_session
from blog_api.models import (
    Comment,
    CommentStatus,
    Post,
    PostStatus,
    Tag,
    User,
    UserRole,
    UserStatus,
)

TAGS = ["python", "fastapi", "postgresql", "docker", "kubernetes",
        "react", "typescript", "aws", "devops", "testing", "performance",
        "security"]

DEFAULT_PASSWORD = "password123"


async def seed(small: bool = False):
    num_users = 5 if small else 50
    num_posts = 40 if small else 2000

    print(f"Seeding: {num_users} users, {num_posts} posts")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    password_hash = hash_password(DEFAULT_PASSWORD)

    async with transactional_session() as session:
        tags = [Tag(name=name) for name in TAGS]
        session.add_all(tags)

        admin = User(
            name="Admin",
            email="admin@example.com",
            password_hash=password_hash,
            role=UserRole.ADMIN,
        )
        users = [admin] + [
            User(
                name=f"User {i}",
                email=f"user_{i:04d}@example.com",
                password_hash=password_hash,
                status=UserStatus.BLOCKED if i % 10 == 9 else UserStatus.ACTIVE,
            )
            for i in range(num_users)
        ]
        session.add_all(users)
        await session.flush()
        print(f"  Created {len(tags)} tags and {len(users)} users (password: {DEFAULT_PASSWORD})")

        total_comments = 0
        statuses = [PostStatus.PUBLISHED] * 6 + [PostStatus.DRAFT] * 3 + [PostStatus.ARCHIVED]
        for i in range(num_posts):
            created = datetime.now(timezone.utc) - timedelta(days=random.randint(0, 365))
            post = Post(
                title=f"Post {i}: notes on {random.choice(TAGS)}",
                content=f"Content of post {i}. " * random.randint(5, 40),
                status=random.choice(statuses),
                is_featured=random.random() < 0.1,
                views=random.randint(0, 5000),
                author_id=random.choice(users).id,
                created_at=created,
            )
            post.tags = random.sample(tags, k=random.randint(0, 3))
            session.add(post)
            await session.flush()

            if post.status != PostStatus.PUBLISHED:
                continue

            parent_id = None
            for depth in range(3):
                comment = Comment(
                    content=f"Level {depth + 1} comment on post {i}",
                    status=CommentStatus.PENDING if random.random() < 0.1 else CommentStatus.APPROVED,
                    post_id=post.id,
                    author_id=random.choice(users).id,
                    parent_id=parent_id,
                    created_at=created + timedelta(hours=depth + 1),
                )
                session.add(comment)
                await session.flush()
                parent_id = comment.id
                total_comments += 1

        print(f"  Created {num_posts} posts and {total_comments} comments")

    print(f"Seeding complete in {time.perf_counter() - start:.2f}s")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the blog database")
    parser.add_argument("--small", action="store_true", help="Seed a small dataset")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))
