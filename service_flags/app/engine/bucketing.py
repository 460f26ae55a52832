"""
Deterministic bucketing for percentage rollouts.

The hash is the 32-bit ``h = h * 31 + unit`` string hash over UTF-16 code
units, wrapped as two's complement. It must stay bit-for-bit identical to
the JavaScript backend and SDKs so one user lands in the same bucket no
matter which client evaluates the flag.
"""

BUCKET_COUNT = 100

_MASK_32 = 0xFFFFFFFF
_SIGN_BIT = 0x80000000


def string_hash(seed: str) -> int:
    """Signed 32-bit hash of ``seed`` over its UTF-16 code units."""
    encoded = seed.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = (h * 31 + unit) & _MASK_32
    if h & _SIGN_BIT:
        h -= 1 << 32
    return h


def bucket(seed: str) -> int:
    """Map ``seed`` to an integer in ``[0, 100)``."""
    return abs(string_hash(seed)) % BUCKET_COUNT


def js_string(value) -> str:
    """Stringify a JSON scalar the way JavaScript string concatenation does."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value != value:
            return "NaN"
        if value in (float("inf"), float("-inf")):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    return str(value)


def rollout_seed(user_id, flag_key: str) -> str:
    """Seed used by percentage rules: user id (empty when absent) + flag key.

    Non-string ids are rendered as JavaScript would, so ``2.0`` and ``true``
    bucket identically in every SDK.
    """
    # NaN is falsy in JavaScript
    if not user_id or user_id != user_id:
        return flag_key
    return f"{js_string(user_id)}{flag_key}"
