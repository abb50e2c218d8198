"""Fibonacci price ladders."""
from smartflow.models import FibonacciLevels

EXTENSION_RATIOS = {
    "fib_236": 1.236,
    "fib_382": 1.382,
    "fib_500": 1.500,
    "fib_618": 1.618,
    "fib_786": 1.786,
    "fib_1618": 2.618,
}


def fibonacci_extensions(entry_price: float) -> FibonacciLevels:
    """Fixed extension ratios applied directly to the entry price."""
    return FibonacciLevels(**{name: entry_price * ratio for name, ratio in EXTENSION_RATIOS.items()})


def nearest_fib_level(current_price: float, levels: FibonacciLevels) -> tuple[str, float, float]:
    """Return (level name, level price, absolute distance) closest to the current price."""
    name, price = min(levels.as_dict().items(), key=lambda item: abs(current_price - item[1]))
    return name, price, abs(current_price - price)
