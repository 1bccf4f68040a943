"""
Candidate ("Universal") - one trading-rule genome
==================================================

A candidate carries up to four expression trees (enter long, enter short,
exit long, exit short), four optional risk parameters (NaN = absent), a
trend strength for pattern terminals, and an optional exit-on-session-close
flag.

Candidates are never changed in place: ``mutate`` and ``crossover`` return
new candidates, and every genetic operator asserts ``is_consistent`` on its
result.

Usage:
    from evolution.candidate import Candidate
    from evolution.genome_space import GenomeSpace

    space = GenomeSpace()
    rng = random.Random(42)

    parent = Candidate.new_random(space, rng)
    child = parent.mutate(rng)
    print(child.to_source("MyStrategy"))
"""

from __future__ import annotations

import hashlib
import itertools
import json
import logging
import math
import random
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from core.exceptions import ConsistencyViolation, SerializationError
from core.floating import format_decimal, is_absent, parse_decimal
from evolution.expressions import Expression, expression_from_dict, random_expression
from evolution.genome_space import ExitShape, GenomeSpace

logger = logging.getLogger(__name__)

# Initial stop/target percent is drawn from STEP * (1..8)
STOP_TARGET_PERCENT_STEP = 0.0025
DEFAULT_TREND_STRENGTH = 4

TREE_FIELDS = ("enter_long", "enter_short", "exit_long", "exit_short")
RISK_FIELDS = (
    "parabolic_stop_percent",
    "profit_target_percent",
    "stop_loss_percent",
    "trail_stop_percent",
)

_id_counter = itertools.count(1)
_id_lock = threading.Lock()


def _next_id() -> int:
    with _id_lock:
        return next(_id_counter)


class GeneGroup(Enum):
    ENTRY = "entry"
    EXIT = "exit"
    TREND_STRENGTH = "trend_strength"
    SESSION_CLOSE = "session_close"


class Candidate:
    """A full strategy genome participating in the search."""

    def __init__(
        self,
        space: GenomeSpace,
        enter_long: Optional[Expression] = None,
        enter_short: Optional[Expression] = None,
        exit_long: Optional[Expression] = None,
        exit_short: Optional[Expression] = None,
        exit_on_session_close: Optional[bool] = None,
        parabolic_stop_percent: float = math.nan,
        profit_target_percent: float = math.nan,
        stop_loss_percent: float = math.nan,
        trail_stop_percent: float = math.nan,
        trend_strength: int = DEFAULT_TREND_STRENGTH,
        candidate_id: Optional[int] = None,
    ):
        self.space = space
        self.id = candidate_id if candidate_id is not None else _next_id()
        self.enter_long = enter_long
        self.enter_short = enter_short
        self.exit_long = exit_long
        self.exit_short = exit_short
        self.exit_on_session_close = exit_on_session_close
        self.parabolic_stop_percent = parabolic_stop_percent
        self.profit_target_percent = profit_target_percent
        self.stop_loss_percent = stop_loss_percent
        self.trail_stop_percent = trail_stop_percent
        self.trend_strength = trend_strength

        self._node_count = -1
        self._node_count_lock = threading.Lock()
        self._init_claim = threading.Lock()

    # =========================================================================
    # Invariant
    # =========================================================================

    @property
    def is_consistent(self) -> bool:
        has_parabolic = not is_absent(self.parabolic_stop_percent)
        has_target = not is_absent(self.profit_target_percent)
        has_stop = not is_absent(self.stop_loss_percent)
        has_trail = not is_absent(self.trail_stop_percent)
        return (
            (self.enter_long is not None or self.enter_short is not None)
            and (self.exit_long is None or self.enter_long is not None)
            and (self.exit_short is None or self.enter_short is not None)
            and (not (has_stop or has_trail) or has_target)
            and (not (has_parabolic and self.exit_short is None) or not has_target)
            and (self.exit_long is not None or self.exit_short is not None
                 or has_parabolic or has_stop or has_trail)
            and self.trend_strength > 0
        )

    def _assert_consistent(self, operation: str) -> "Candidate":
        if not self.is_consistent:
            raise ConsistencyViolation(operation, context={"id": self.id, "genome": self.to_string()})
        return self

    def entries_compatible(self, other: "Candidate") -> bool:
        """Same long/short entry presence pattern (crossover precondition)."""
        return ((self.enter_long is None) == (other.enter_long is None)
                and (self.enter_short is None) == (other.enter_short is None))

    # =========================================================================
    # Copy
    # =========================================================================

    def _fields(self) -> Dict[str, Any]:
        return {
            "enter_long": self.enter_long,
            "enter_short": self.enter_short,
            "exit_long": self.exit_long,
            "exit_short": self.exit_short,
            "exit_on_session_close": self.exit_on_session_close,
            "parabolic_stop_percent": self.parabolic_stop_percent,
            "profit_target_percent": self.profit_target_percent,
            "stop_loss_percent": self.stop_loss_percent,
            "trail_stop_percent": self.trail_stop_percent,
            "trend_strength": self.trend_strength,
        }

    @staticmethod
    def _copied(fields: Dict[str, Any]) -> Dict[str, Any]:
        return {
            name: (value.copy() if isinstance(value, Expression) else value)
            for name, value in fields.items()
        }

    def copy(self) -> "Candidate":
        """Deep copy keeping the id; run-time state is not carried over."""
        return Candidate(self.space, candidate_id=self.id, **self._copied(self._fields()))

    # =========================================================================
    # Genetic operators
    # =========================================================================

    @classmethod
    def new_random(cls, space: GenomeSpace, rng: random.Random) -> "Candidate":
        """Random consistent candidate."""
        entry_shapes = space.entry_shapes()
        is_long, is_short = entry_shapes[rng.randrange(len(entry_shapes))]

        exit_shapes = space.exit_shapes()
        exit_shape = exit_shapes[rng.randrange(len(exit_shapes))]

        initial = STOP_TARGET_PERCENT_STEP * (1 + rng.randrange(8))
        by_condition = exit_shape is ExitShape.CONDITION

        enter_long = random_expression(space, rng, True) if is_long else None
        enter_short = random_expression(space, rng, True) if is_short else None
        exit_long = random_expression(space, rng, False) if by_condition and is_long else None
        exit_short = random_expression(space, rng, False) if by_condition and is_short else None
        session_close = (rng.randrange(2) == 0) if space.optimize_session_close else None

        candidate = cls(
            space,
            enter_long=enter_long,
            enter_short=enter_short,
            exit_long=exit_long,
            exit_short=exit_short,
            exit_on_session_close=session_close,
            parabolic_stop_percent=initial if exit_shape is ExitShape.PARABOLIC else math.nan,
            profit_target_percent=(
                2 * initial if exit_shape in (ExitShape.STOP_TARGET, ExitShape.TRAIL_TARGET) else math.nan
            ),
            stop_loss_percent=initial if exit_shape is ExitShape.STOP_TARGET else math.nan,
            trail_stop_percent=initial if exit_shape is ExitShape.TRAIL_TARGET else math.nan,
            trend_strength=2 + rng.randrange(9),
        )
        return candidate._assert_consistent("new_random")

    def _mutation_groups(self) -> List[GeneGroup]:
        groups = []
        if self.space.optimize_entries:
            groups.append(GeneGroup.ENTRY)
        if self.space.optimize_exits:
            groups.append(GeneGroup.EXIT)
        groups.append(GeneGroup.TREND_STRENGTH)
        if self.space.optimize_session_close:
            groups.append(GeneGroup.SESSION_CLOSE)
        return groups

    def _mutate_tree(self, tree: Expression, rng: random.Random, is_entry: bool) -> Expression:
        nodes = tree.nodes()
        target = nodes[rng.randrange(len(nodes))]
        return tree.mutate(self, rng, target, is_entry)

    def mutate(self, rng: random.Random) -> "Candidate":
        """
        Child differing in exactly one gene group.

        Entry: one node of one present entry tree. Exit: one node of one
        present exit tree, or one present risk parameter scaled by 0.75/1.25.
        Trend strength: redrawn in [2, 10]. Session close: toggled.
        """
        fields = self._copied(self._fields())
        groups = self._mutation_groups()
        group = groups[rng.randrange(len(groups))]

        if group is GeneGroup.ENTRY:
            sides = [name for name in ("enter_long", "enter_short") if fields[name] is not None]
            name = sides[rng.randrange(len(sides))]
            fields[name] = self._mutate_tree(getattr(self, name), rng, True)

        elif group is GeneGroup.EXIT:
            options: List[str] = [name for name in ("exit_long", "exit_short") if fields[name] is not None]
            options.extend(name for name in RISK_FIELDS if not is_absent(fields[name]))
            name = options[rng.randrange(len(options))]
            if name in RISK_FIELDS:
                fields[name] = fields[name] * (0.75 if rng.randrange(2) == 0 else 1.25)
            else:
                fields[name] = self._mutate_tree(getattr(self, name), rng, False)

        elif group is GeneGroup.TREND_STRENGTH:
            fields["trend_strength"] = 2 + rng.randrange(9)

        else:
            fields["exit_on_session_close"] = not bool(self.exit_on_session_close)

        return Candidate(self.space, **fields)._assert_consistent("mutate")

    def crossover(self, fitter: "Candidate", rng: random.Random) -> "Candidate":
        """
        Child taking one gene group from ``fitter`` and the rest from self.

        Groups: entry pair; exit pair with all risk parameters and the
        session-close flag; trend strength. Callers check
        :meth:`entries_compatible` first.
        """
        groups = []
        if self.space.optimize_entries:
            groups.append(GeneGroup.ENTRY)
        if self.space.optimize_exits:
            groups.append(GeneGroup.EXIT)
        groups.append(GeneGroup.TREND_STRENGTH)
        group = groups[rng.randrange(len(groups))]

        fields = self._copied(self._fields())
        donor = self._copied(fitter._fields())
        if group is GeneGroup.ENTRY:
            taken: Tuple[str, ...] = ("enter_long", "enter_short")
        elif group is GeneGroup.EXIT:
            taken = ("exit_long", "exit_short", "exit_on_session_close") + RISK_FIELDS
        else:
            taken = ("trend_strength",)
        for name in taken:
            fields[name] = donor[name]

        return Candidate(self.space, **fields)._assert_consistent("crossover")

    # =========================================================================
    # Complexity
    # =========================================================================

    @property
    def node_count(self) -> int:
        """Tree nodes plus one per present risk parameter, computed once."""
        if self._node_count >= 0:
            return self._node_count
        with self._node_count_lock:
            if self._node_count < 0:
                count = sum(tree.node_count() for tree in self.trees() if tree is not None)
                count += sum(1 for name in RISK_FIELDS if not is_absent(getattr(self, name)))
                self._node_count = count
            return self._node_count

    def trees(self) -> Tuple[Optional[Expression], ...]:
        return self.enter_long, self.enter_short, self.exit_long, self.exit_short

    # =========================================================================
    # Run time
    # =========================================================================

    def on_configure(self, host) -> None:
        if self.exit_on_session_close is not None:
            host.exit_on_session_close = self.exit_on_session_close

    def on_bar_update(self, host) -> None:
        """Per-bar hook: one-shot initialization, then entry/exit evaluation."""
        if host.current_bar < host.bars_required_to_trade:
            return

        # Claimed once and never released
        if self._init_claim.acquire(blocking=False):
            for tree in self.trees():
                if tree is not None:
                    tree.initialize(self, host)
            if not is_absent(self.parabolic_stop_percent):
                host.set_parabolic_stop(self.parabolic_stop_percent)
            if not is_absent(self.profit_target_percent):
                host.set_profit_target(self.profit_target_percent)
            if not is_absent(self.stop_loss_percent):
                host.set_stop_loss(self.stop_loss_percent)
            if not is_absent(self.trail_stop_percent):
                host.set_trail_stop(self.trail_stop_percent)

        if self.enter_long is not None and self.enter_long.evaluate(self, host):
            host.enter_long()
        if self.exit_long is not None and self.exit_long.evaluate(self, host):
            host.exit_long()
        if self.enter_short is not None and self.enter_short.evaluate(self, host):
            host.enter_short()
        if self.exit_short is not None and self.exit_short.evaluate(self, host):
            host.exit_short()

    @property
    def is_initialized(self) -> bool:
        return self._init_claim.locked()

    # =========================================================================
    # Rendering
    # =========================================================================

    def to_string(self) -> str:
        """Canonical print used as the structural deduplication key."""
        parts = []
        for name, label in zip(TREE_FIELDS, ("EL", "ES", "XL", "XS")):
            tree = getattr(self, name)
            parts.append(f"{label}={tree.to_string() if tree is not None else '-'}")
        for name, label in zip(RISK_FIELDS, ("PS", "PT", "SL", "TS")):
            value = getattr(self, name)
            parts.append(f"{label}={'-' if is_absent(value) else format_decimal(value)}")
        parts.append(f"SC={self.exit_on_session_close}")
        parts.append(f"TR={self.trend_strength}")
        return " | ".join(parts)

    def fingerprint(self) -> str:
        return hashlib.sha256(self.to_string().encode("utf-8")).hexdigest()

    def to_source(self, strategy_name: Optional[str] = None) -> str:
        """Readable Python strategy class for this candidate."""
        name = strategy_name or "UniversalStrategy"
        lines = [
            f"class {name}(Strategy):",
            f'    """Generated from candidate #{self.id}."""',
            "",
            "    def on_configure(self):",
            f"        self.candlestick_pattern_logic = CandleStickPatternLogic(self, {self.trend_strength})",
        ]
        if self.exit_on_session_close is not None:
            lines.append(f"        self.exit_on_session_close = {self.exit_on_session_close}")
        setters = (
            ("parabolic_stop_percent", "set_parabolic_stop"),
            ("profit_target_percent", "set_profit_target"),
            ("stop_loss_percent", "set_stop_loss"),
            ("trail_stop_percent", "set_trail_stop"),
        )
        for field_name, setter in setters:
            value = getattr(self, field_name)
            if not is_absent(value):
                lines.append(f"        self.{setter}({format_decimal(value)})")

        lines += [
            "",
            "    def on_bar_update(self):",
            "        if self.current_bar < self.bars_required_to_trade:",
            "            return",
        ]
        actions = (
            ("enter_long", "enter_long"),
            ("exit_long", "exit_long"),
            ("enter_short", "enter_short"),
            ("exit_short", "exit_short"),
        )
        for field_name, action in actions:
            tree = getattr(self, field_name)
            if tree is None:
                continue
            lines.append("")
            lines.append(f"        if {tree.to_source(3)}:")
            lines.append(f"            self.{action}()")
        return "\n".join(lines) + "\n"

    def __repr__(self) -> str:
        return f"Candidate(id={self.id}, nodes={self.node_count})"

    # =========================================================================
    # Persistence
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": "Universal", "id": str(self.id)}
        for name in TREE_FIELDS:
            tree = getattr(self, name)
            data[name] = tree.to_dict() if tree is not None else None
        data["exit_on_session_close"] = (
            str(self.exit_on_session_close) if self.exit_on_session_close is not None else None
        )
        for name in RISK_FIELDS:
            data[name] = format_decimal(getattr(self, name))
        data["trend_strength"] = str(self.trend_strength)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], space: GenomeSpace) -> "Candidate":
        """Rebuild a persisted candidate. A fresh id is assigned."""
        try:
            trees = {
                name: (expression_from_dict(data[name], space.registry) if data.get(name) else None)
                for name in TREE_FIELDS
            }
            session = data.get("exit_on_session_close")
            return cls(
                space,
                exit_on_session_close=None if session is None else str(session) == "True",
                trend_strength=int(data["trend_strength"]),
                **trees,
                **{name: parse_decimal(str(data[name])) for name in RISK_FIELDS},
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SerializationError("Malformed candidate document", cause=e) from e

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str, space: GenomeSpace) -> "Candidate":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise SerializationError("Candidate document is not valid JSON", cause=e) from e
        return cls.from_dict(data, space)

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json(), encoding="utf-8")
        logger.info(f"Saved candidate {self.id} to {path}")

    @classmethod
    def load(cls, path: Path, space: GenomeSpace) -> "Candidate":
        return cls.from_json(Path(path).read_text(encoding="utf-8"), space)
