from urllib.parse import urlparse


class InvalidURLError(ValueError):
    pass


def validate_url(url: str) -> str:
    cleaned = (url or "").strip()
    if not cleaned:
        raise InvalidURLError("url is required")
    parsed = urlparse(cleaned)
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
        raise InvalidURLError(f"invalid url: {cleaned}")
    return cleaned


def parse_tags(raw) -> list[str]:
    """Collapse raw tag input into an ordered, de-duplicated list.

    Accepts a comma-separated string or any iterable of strings. Order of
    first appearance wins and case is preserved.
    """
    if not raw:
        return []
    if isinstance(raw, str):
        tokens = raw.split(",")
    else:
        # Tags are stored comma-joined, so commas can never live inside a tag.
        tokens = [
            part for item in raw if item is not None for part in str(item).split(",")
        ]
    return list(dict.fromkeys(t.strip() for t in tokens if t and t.strip()))


def join_tags(tags) -> str:
    return ",".join(parse_tags(tags))
