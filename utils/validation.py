"""Input validation and log sanitization."""
import re

MAX_LOCATION_LENGTH = 200

_DANGEROUS_PATTERNS = ('..', '/', '\\', '://', '@')


def validate_location_name(location: str) -> str:
    """Validate a location name before it reaches the store or an upstream URL.

    Args:
        location: The location string to validate

    Returns:
        The location with surrounding and repeated whitespace collapsed

    Raises:
        ValueError: If location is empty, too long or contains unsafe characters
    """
    if not location or not isinstance(location, str):
        raise ValueError("Location must be a non-empty string")

    cleaned = re.sub(r'\s+', ' ', location).strip()
    if not cleaned:
        raise ValueError("Location must be a non-empty string")

    if len(cleaned) > MAX_LOCATION_LENGTH:
        raise ValueError(
            f"Location string too long (max {MAX_LOCATION_LENGTH} characters, got {len(cleaned)})"
        )

    if not all(c.isprintable() for c in cleaned):
        raise ValueError("Location contains non-printable or control characters")

    for pattern in _DANGEROUS_PATTERNS:
        if pattern in cleaned:
            raise ValueError(f"Location contains disallowed pattern: {pattern}")

    return cleaned


def sanitize_for_logging(data: str, max_length: int = 100) -> str:
    """Make user input safe to interpolate into a log line.

    Truncates, replaces control characters with spaces and redacts anything
    that looks like a credential.
    """
    if not data or not isinstance(data, str):
        return str(data)[:max_length] if data else ""

    if len(data) > max_length:
        data = data[:max_length] + "..."

    data = re.sub(r'[\r\n\t\x00-\x1f\x7f-\x9f]', ' ', data)
    data = re.sub(r'Bearer\s+\S+', 'Bearer [REDACTED]', data, flags=re.IGNORECASE)
    data = re.sub(r'(api_key|key|token)=[^&\s]+', r'\1=[REDACTED]', data, flags=re.IGNORECASE)

    return re.sub(r'\s+', ' ', data).strip()
