"""Quality selection over resolved stream variants.

Policies:
- "best" / "worst": highest or lowest numeric label
- "interactive": ask once per run, then reuse the answer
- anything else: treated as a label ("720p", "hd"), matched by substring,
  then by nearest numeric value, then the first variant

A label picked interactively is remembered on the selector instance and
reused while the policy is unset, "best" or "interactive".
"""

import re
from collections.abc import Callable

from models.models import StreamDescriptor, StreamVariant
from utils.logging import get_logger

logger = get_logger(__name__)

# Prompt receives (choices, message) and returns the chosen choice or None
QualityPrompt = Callable[[list[str], str], str | None]

_NUMBER_RE = re.compile(r"(\d+)p?")

BEST = "best"
WORST = "worst"
INTERACTIVE = "interactive"


def label_number(label: str) -> int:
    """First run of digits in a label, 0 when there is none."""
    match = _NUMBER_RE.search(label or "")
    return int(match.group(1)) if match else 0


def _pick(variants: list[StreamVariant], better: Callable[[int, int], bool]) -> StreamVariant:
    chosen = variants[0]
    for variant in variants[1:]:
        if better(label_number(variant.label), label_number(chosen.label)):
            chosen = variant
    return chosen


def best_variant(variants: list[StreamVariant]) -> StreamVariant:
    """Highest numeric label; the earliest variant wins ties."""
    return _pick(variants, lambda a, b: a > b)


def worst_variant(variants: list[StreamVariant]) -> StreamVariant:
    """Lowest numeric label; the earliest variant wins ties."""
    return _pick(variants, lambda a, b: a < b)


def match_label(variants: list[StreamVariant], wanted: str) -> StreamVariant:
    """Variant for an explicit label request.

    Case-insensitive substring match first, then the nearest numeric
    label, then the first variant.
    """
    wanted = wanted.strip().lower()
    for variant in variants:
        if wanted and wanted in variant.label.lower():
            return variant

    target = label_number(wanted)
    if target:
        numbered = [v for v in variants if label_number(v.label)]
        if numbered:
            chosen = numbered[0]
            for variant in numbered[1:]:
                if abs(label_number(variant.label) - target) < abs(label_number(chosen.label) - target):
                    chosen = variant
            return chosen

    return variants[0]


class QualitySelector:
    """Pick one URL from a descriptor according to a policy.

    Args:
        prompt: Interactive chooser; without one, "interactive" behaves like "best"
    """

    def __init__(self, prompt: QualityPrompt | None = None) -> None:
        self.prompt = prompt
        self.remembered: str | None = None

    def select(self, descriptor: StreamDescriptor, policy: str | None = None) -> str:
        variants = descriptor.variants
        if len(variants) == 1:
            return variants[0].url

        policy = (policy or BEST).strip().lower()

        if policy in (BEST, INTERACTIVE) and self.remembered is not None:
            for variant in variants:
                if variant.label.lower() == self.remembered.lower():
                    return variant.url

        if policy == BEST:
            return best_variant(variants).url
        if policy == WORST:
            return worst_variant(variants).url
        if policy == INTERACTIVE:
            return self._ask(variants).url
        return match_label(variants, policy).url

    def _ask(self, variants: list[StreamVariant]) -> StreamVariant:
        if self.prompt is None:
            return best_variant(variants)

        choices = [v.label or f"Option {i + 1}" for i, v in enumerate(variants)]
        answer = self.prompt(choices, "Select quality")
        if answer is None or answer not in choices:
            logger.debug("Quality prompt cancelled, falling back to best")
            return best_variant(variants)

        chosen = variants[choices.index(answer)]
        if chosen.label:
            self.remembered = chosen.label
        return chosen

    def reset(self) -> None:
        """Forget the remembered label."""
        self.remembered = None
