"""Minimal metric primitives and a Prometheus text-format renderer."""

from __future__ import annotations

import enum
import math
import threading
from dataclasses import dataclass
from typing import Iterable


class MetricType(enum.Enum):
    """Kind of a metric as shown in the exposition format."""

    COUNTER = "counter"
    GAUGE = "gauge"


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    """Join the non-empty parts with underscores; an empty name gives ''."""
    if not name:
        return ""
    return "_".join(part for part in (namespace, subsystem, name) if part)


@dataclass(frozen=True)
class Desc:
    """Describes one metric family: name, help text, label names and type."""

    fq_name: str
    help: str
    label_names: tuple[str, ...] = ()
    metric_type: MetricType = MetricType.GAUGE

    def sample(self, value: float, *args: str) -> "Sample":
        """Build a sample of this family for the given label values."""
        if len(args) != len(self.label_names):
            raise ValueError(
                f"{self.fq_name}: expected {len(self.label_names)} label values, got {len(args)}"
            )
        return Sample(self, float(value), tuple(str(a) for a in args))


@dataclass(frozen=True)
class Sample:
    """A single observed value of a metric family."""

    desc: Desc
    value: float
    label_values: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.desc.fq_name

    @property
    def labels(self) -> dict[str, str]:
        return dict(zip(self.desc.label_names, self.label_values))


class Metric:
    """A counter or gauge, optionally split by labels."""

    def __init__(
        self,
        metric_type: MetricType,
        name: str,
        help: str,
        labels: Iterable[str] = (),
        *,
        namespace: str = "",
        subsystem: str = "",
    ) -> None:
        self.desc = Desc(
            build_fq_name(namespace, subsystem, name), help, tuple(labels), metric_type
        )
        self._lock = threading.Lock()
        self._values: dict[tuple[str, ...], float] = {}
        self._init_values()

    def _init_values(self) -> None:
        self._values.clear()
        if not self.desc.label_names:
            self._values[()] = 0.0

    def _key(self, args: tuple) -> tuple[str, ...]:
        if len(args) != len(self.desc.label_names):
            raise ValueError(
                f"{self.desc.fq_name}: expected {len(self.desc.label_names)} label values, "
                f"got {len(args)}"
            )
        return tuple(str(a) for a in args)

    def set(self, value: float, *args: str) -> None:
        """Set the value for the given label values."""
        key = self._key(args)
        with self._lock:
            self._values[key] = float(value)

    def inc(self, amount: float = 1.0, *args: str) -> None:
        """Add to the value for the given label values."""
        key = self._key(args)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)

    def reset(self) -> None:
        """Drop all labelled values; an unlabelled metric goes back to zero."""
        with self._lock:
            self._init_values()

    def collect(self) -> list[Sample]:
        """Return the current samples in insertion order."""
        with self._lock:
            return [self.desc.sample(v, *k) for k, v in self._values.items()]

    def describe(self) -> list[Desc]:
        return [self.desc]


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _escape_label(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def render_text(samples: Iterable[Sample]) -> str:
    """Render samples in the Prometheus text exposition format."""
    families: dict[Desc, list[Sample]] = {}
    for sample in samples:
        families.setdefault(sample.desc, []).append(sample)
    lines: list[str] = []
    for desc, members in families.items():
        lines.append(f"# HELP {desc.fq_name} {_escape_help(desc.help)}")
        lines.append(f"# TYPE {desc.fq_name} {desc.metric_type.value}")
        for sample in members:
            if sample.label_values:
                pairs = ",".join(
                    f'{k}="{_escape_label(v)}"' for k, v in sample.labels.items()
                )
                lines.append(f"{desc.fq_name}{{{pairs}}} {_format_value(sample.value)}")
            else:
                lines.append(f"{desc.fq_name} {_format_value(sample.value)}")
    return "\n".join(lines) + ("\n" if lines else "")