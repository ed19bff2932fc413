"""Input validation utilities for domains and keyword lists."""

import re

from rank_engine.utils.helpers import normalize_domain


def validate_domain(domain: str) -> tuple[bool, str]:
    """Validate a domain name.

    Args:
        domain: The domain name to validate.  May include protocol prefix,
                ``www.`` and a path; those are stripped first.

    Returns:
        Tuple of (is_valid, error_message).  error_message is empty on success.
    """
    if not domain or not isinstance(domain, str):
        return False, "Domain is empty or not a string."
    domain = normalize_domain(domain)
    if len(domain) > 253:
        return False, "Domain exceeds maximum length (253 chars)."
    if "." not in domain:
        return False, "Domain must contain at least one dot."
    labels = domain.split(".")
    for label in labels:
        if not label:
            return False, "Domain contains empty label (double dot)."
        if len(label) > 63:
            return False, f"Label '{label}' exceeds 63 chars."
        if not re.match(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$", label):
            return False, f"Label '{label}' contains invalid characters."
    return True, ""


def validate_keywords(keywords: list[str], max_count: int = 50) -> tuple[bool, str]:
    """Validate a batch keyword list.

    Returns:
        Tuple of (is_valid, error_message).
    """
    if not isinstance(keywords, (list, tuple)):
        return False, "Keywords must be a list of strings."
    cleaned = [k for k in keywords if isinstance(k, str) and k.strip()]
    if not cleaned:
        return False, "At least one keyword is required."
    if len(cleaned) != len(keywords):
        return False, "Keywords must be non-empty strings."
    if len(cleaned) > max_count:
        return False, f"A batch may contain at most {max_count} keywords (got {len(cleaned)})."
    return True, ""
