import random
import string

ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits
LINE_WIDTH = 60


def generate_filler(size: int) -> str:
    """Return ``size`` random alphanumeric symbols, wrapped every 60 symbols.

    A newline precedes each symbol whose index is a non-zero multiple of
    ``LINE_WIDTH`` so the text stays readable when dropped into HTML.
    """
    if size < 0:
        raise ValueError(f"filler size must be >= 0, got {size}")
    symbols = "".join(random.choices(ALPHABET, k=size))
    return "\n".join(symbols[i : i + LINE_WIDTH] for i in range(0, size, LINE_WIDTH))


def pick_fragment(filler: str) -> str:
    # 0..len(filler) inclusive, so both the empty and the full buffer occur
    k = random.randint(0, len(filler))
    return filler[:k]
