import random
import string
import time

ALNUM = string.ascii_uppercase + string.digits


def generate_order_number(prefix="ORD"):
    """Return a unique-enough order number, e.g. ``ORD-1704567890123-A4B9X``.

    The same value is sent to the gateway as the merchant-side order id.
    """
    ts = int(time.time() * 1000)
    rand = "".join(random.choices(ALNUM, k=5))
    return f"{prefix}-{ts}-{rand}"
