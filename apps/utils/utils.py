def short_id(value) -> str:
    return str(value)[:8]
