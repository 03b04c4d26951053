"""Page identity slugs and the HMAC tag authorizing URL Metric submissions.

A page identity is a URL plus its query variant. The slug is the MD5 hex
digest of the normalized URL (priming marker removed, query parameters
sorted). The server hands each rendered page an HMAC-SHA256 tag over the slug
and URL; a submission is only accepted when the tag verifies, which binds the
submitted metric to the page that was actually served.
"""

from __future__ import annotations

import hashlib
import hmac
import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

PRIME_QUERY_PARAM = "od_prime"

SLUG_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def strip_priming_marker(url: str) -> str:
    """Remove the ``od_prime`` query parameter from a URL."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != PRIME_QUERY_PARAM]
    return urlunsplit(parts._replace(query=urlencode(query)))


def has_priming_marker(url: str) -> bool:
    query = parse_qsl(urlsplit(url).query, keep_blank_values=True)
    return (PRIME_QUERY_PARAM, "1") in query


def normalize_url(url: str) -> str:
    """Normalize a URL into its page identity form.

    The priming marker and fragment are dropped, the scheme and host are
    lowercased, and query parameters are sorted so that parameter order does
    not create distinct page identities.
    """
    parts = urlsplit(url)
    query = sorted(
        (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != PRIME_QUERY_PARAM
    )
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path or "/", urlencode(query), "")
    )


def compute_url_metrics_slug(url: str) -> str:
    return hashlib.md5(normalize_url(url).encode("utf-8"), usedforsecurity=False).hexdigest()


def is_valid_slug(slug: str) -> bool:
    return bool(SLUG_PATTERN.match(slug))


def compute_url_metrics_hmac(slug: str, url: str, secret: str) -> str:
    """Compute the hex HMAC-SHA256 tag binding a slug to a URL."""
    message = f"{slug}|{normalize_url(url)}".encode()
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_url_metrics_hmac(tag: str, slug: str, url: str, secret: str) -> bool:
    """Verify an HMAC tag in constant time."""
    expected = compute_url_metrics_hmac(slug, url, secret)
    return hmac.compare_digest(tag, expected)
