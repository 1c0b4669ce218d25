
def is_valid_object_id(s: str) -> bool:
    """Check if string is a valid 24-char hex ObjectId format."""
    return isinstance(s, str) and len(s) == 24 and all(c in "0123456789abcdef" for c in s.lower())
