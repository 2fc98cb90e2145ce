def require_positive_number(v: float, name: str = "value") -> None:
    if v <= 0:
        raise ValueError(f"{name} must be > 0")


def parse_int(text: str, name: str = "value") -> int:
    t = (text or "").strip()
    if not t.lstrip("-").isdigit():
        raise ValueError(f"{name} must be an integer, got {text!r}")
    return int(t)
