# horse_name_generator.py
# Hands out unique race-horse names from a JSON lexicon.
# One allocator serves one field; reset() empties the pool for the next field.

from __future__ import annotations
import json
import random
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

NAME_CONFIG_PATH = Path(__file__).resolve().parent / "configs" / "horse_names.json"
TOKEN_RE = re.compile(r"\[([A-Za-z]+)\]")
MAX_ATTEMPTS = 100
DEFAULT_PATTERN = "[Adjective] [Noun]"


def _fill_pattern(pattern: str, lex: Dict[str, List[str]], rng: random.Random) -> str:
    def repl(m: re.Match) -> str:
        token = m.group(1)
        pool = lex.get(token) or lex.get(token.capitalize()) or []
        return rng.choice(pool) if pool else token
    return TOKEN_RE.sub(repl, pattern)


def _normalize(s: str) -> str:
    return re.sub(r"\s+", " ", s.strip()).lower()


def _fits_rules(name: str, rules: Dict[str, Any]) -> bool:
    if len(name) > rules.get("max_length", 32):
        return False
    reserved = {_normalize(x) for x in rules.get("reserved_names", [])}
    return _normalize(name) not in reserved


class NameAllocator:
    def __init__(self, config_path: Optional[str] = None, *, config: Optional[Dict[str, Any]] = None,
                 seed: Optional[int] = None, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random(seed)
        if config is None:
            with open(config_path or NAME_CONFIG_PATH, "r", encoding="utf-8") as f:
                config = json.load(f)
        self.cfg = config

        self.lex = self.cfg.get("lexicons", {})
        self.patterns = self.cfg.get("patterns") or [DEFAULT_PATTERN]
        self.rules = self.cfg.get("rules", {})
        if not self.lex.get("Adjective") or not self.lex.get("Noun"):
            raise ValueError("Name lexicon needs non-empty 'Adjective' and 'Noun' lists.")
        self._used: Set[str] = set()

    @property
    def in_use(self) -> Set[str]:
        return set(self._used)

    def _candidate(self) -> str:
        pattern = self.rng.choice(self.patterns)
        return _fill_pattern(pattern, self.lex, rng=self.rng)

    def generate(self) -> str:
        name = ""
        for _ in range(MAX_ATTEMPTS):
            name = self._candidate()
            if name not in self._used and _fits_rules(name, self.rules):
                self._used.add(name)
                return name
        # Pool is crowded: fall back to a numbered variant of the last draw
        suffixed = f"{name} {self.rng.randrange(100)}"
        while suffixed in self._used:
            suffixed = f"{name} {self.rng.randrange(1000)}"
        self._used.add(suffixed)
        return suffixed

    def release(self, name: str) -> None:
        self._used.discard(name)

    def reset(self) -> None:
        self._used.clear()


if __name__ == "__main__":
    allocator = NameAllocator(seed=0)
    for _ in range(12):
        print(allocator.generate())
