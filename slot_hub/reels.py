# Three-reel, 3-of-a-kind slot outcomes. Each reel is the same fixed 36-stop
# strip; a spin picks a uniform stop per reel, so a symbol's draw probability
# is its count / 36 and the paytable below targets ~80% return to player.
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

SYMBOL_NAMES = ["Grapes", "Cherry", "Lemon", "Orange", "Watermelon", "Star", "Diamond", "Seven"]
SYMBOL_COUNTS = [8, 7, 6, 5, 4, 3, 2, 1]
PAYOUT_MULTIPLIERS = [13, 16, 21, 35, 70, 165, 550, 3300]
REEL_COUNT = 3
TARGET_RTP = 0.80


@dataclass
class SpinResult:
    positions: List[int]
    symbols: List[int]
    is_win: bool
    payout: int

    @property
    def symbol_names(self) -> List[str]:
        return [SYMBOL_NAMES[s] for s in self.symbols]


def create_fixed_reel_order(counts: Sequence[int] = SYMBOL_COUNTS) -> List[int]:
    """
    Lay out every symbol `counts[i]` times so no two neighbours match, taking
    the first remaining symbol that differs from the last one placed.
    """
    remaining = [symbol for symbol, count in enumerate(counts) for _ in range(count)]
    ordered: List[int] = []
    last = None
    while remaining:
        index = next((i for i, symbol in enumerate(remaining) if symbol != last), 0)
        last = remaining.pop(index)
        ordered.append(last)
    return ordered


def payout_for(symbols: Sequence[int], stake: int) -> int:
    if len(symbols) != REEL_COUNT or len(set(symbols)) != 1:
        return 0
    return PAYOUT_MULTIPLIERS[symbols[0]] * stake


def theoretical_rtp(counts: Sequence[int] = SYMBOL_COUNTS, multipliers: Sequence[int] = PAYOUT_MULTIPLIERS) -> float:
    total = sum(counts)
    return sum((count / total) ** REEL_COUNT * mult for count, mult in zip(counts, multipliers))


class ReelEngine:
    def __init__(self, rng: Optional[random.Random] = None, counts: Sequence[int] = SYMBOL_COUNTS):
        self.rng = rng or random.SystemRandom()
        self.reel_order = create_fixed_reel_order(counts)

    def draw(self) -> tuple[List[int], List[int]]:
        """Pick a stop on each reel; returns (positions, symbols)."""
        positions = [self.rng.randrange(len(self.reel_order)) for _ in range(REEL_COUNT)]
        return positions, [self.reel_order[p] for p in positions]

    def spin(self, stake: int) -> SpinResult:
        positions, symbols = self.draw()
        payout = payout_for(symbols, stake)
        return SpinResult(positions=positions, symbols=symbols, is_win=payout > 0, payout=payout)
