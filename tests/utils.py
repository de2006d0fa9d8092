"""Test utilities for short-link mapping store tests."""

import random
import string
from typing import Optional

from shortlinks.models.url import UrlMapping


def random_string(length: int = 10) -> str:
    """Generate a random alphanumeric string."""
    return ''.join(random.choice(string.ascii_letters + string.digits) for _ in range(length))


def random_url() -> str:
    """Generate a random URL for testing."""
    domain = f"{random_string(8)}.com"
    path = random_string(12)
    return f"https://{domain}/{path}"


async def create_test_mapping(
    db,
    original_url: Optional[str] = None,
    short_code: Optional[str] = None,
) -> UrlMapping:
    """Create and commit a test UrlMapping in the database."""
    mapping = UrlMapping(
        original_url=original_url or random_url(),
        short_code=short_code or random_string(6),
    )
    db.add(mapping)
    await db.commit()
    await db.refresh(mapping)
    return mapping
