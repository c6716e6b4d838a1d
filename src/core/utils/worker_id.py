"""Worker ID generation using coolnames for unique, memorable identifiers."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "", words: int = 3) -> str:
    """Generate a unique, memorable worker ID using coolnames.

    Human-readable identifiers are easier to trace across log files than
    host names or UUIDs when several ingest workers share a consumer group.

    Args:
        prefix: Optional prefix (e.g., "resources-ingest_worker-0")
        words: Number of words in the generated slug (2-4)

    Examples:
        >>> generate_worker_id()
        'brave-golden-tiger'
        >>> generate_worker_id("resources-ingest_worker")
        'resources-ingest_worker-swift-blue-falcon'
    """
    slug = generate_slug(words)
    return f"{prefix}-{slug}" if prefix else slug
