"""Plot references produced by ``plot(...)`` in CAS expressions.

A plot call does not draw anything itself. It validates its options and returns
a PlotReference whose ``html`` is an ``<img>`` tag pointing at a file named by
the hash of the call. Drawing the file is left to an optional writer callable
configured on the evaluator.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import sympy
from jinja2 import Environment

from .errors import EvaluatorRuntimeError, PlotWarning
from .options import PLOT_URL
from .printing import maxima_str

logger = logging.getLogger(__name__)

SUPPORTED_PLOT_OPTIONS = frozenset(
    {
        "alt",
        "axes",
        "box",
        "color",
        "grid2d",
        "label",
        "legend",
        "logx",
        "logy",
        "nticks",
        "point_type",
        "style",
        "xlabel",
        "xtics",
        "y",
        "ylabel",
        "ytics",
        "yx_ratio",
    }
)

ALT_NOT_STRING = "Plot error: the alt tag definition must be a string, but is not."
UNSUPPORTED_OPTIONS = "Plot error: the following plot2d options are not supported: {options}."

_img_env = Environment(autoescape=True)
_img_template = _img_env.from_string("<img src='{{ url }}/{{ filename }}' alt='{{ alt }}' />")


@dataclass
class PlotReference:
    """A validated plot call and the image it refers to."""

    expression: Any
    ranges: List[list]
    options: Dict[str, Any] = field(default_factory=dict)
    alt: str = ""
    warnings: List[PlotWarning] = field(default_factory=list)
    url: str = PLOT_URL

    @property
    def signature(self) -> str:
        parts = [maxima_str(self.expression), maxima_str(self.ranges)]
        parts += [f"[{name},{maxima_str(value)}]" for name, value in self.options.items()]
        return f"plot({','.join(parts)})"

    @property
    def filename(self) -> str:
        digest = hashlib.md5(self.signature.encode("utf-8")).hexdigest()
        return f"plot-{digest}.png"

    @property
    def html(self) -> str:
        return _img_template.render(url=self.url.rstrip("/"), filename=self.filename, alt=self.alt)

    def __str__(self):
        return self.html


def _option_name(item) -> Optional[str]:
    if isinstance(item, list) and item and isinstance(item[0], sympy.Symbol):
        return item[0].name
    return None


def make_plot(expression=None, *args) -> PlotReference:
    """Build a PlotReference from the arguments of a plot(...) call.

    The first list argument is the variable range, e.g. [x,-2,3]. Every later
    list is an option [name, value...]. Problems with options are recorded as
    warnings on the reference rather than failing the expression.
    """
    if expression is None or not args:
        raise EvaluatorRuntimeError("plot expects an expression and a range such as [x,-2,2].")

    range_spec, option_specs = args[0], args[1:]
    if not (_option_name(range_spec) and len(range_spec) == 3):
        raise EvaluatorRuntimeError(f"plot range must look like [x,lo,hi], got {maxima_str(range_spec)}.")

    ranges = [range_spec]
    options: Dict[str, Any] = {}
    unsupported = []
    warnings = []

    for spec in option_specs:
        name = _option_name(spec)
        if name is None:
            raise EvaluatorRuntimeError(f"plot option must be a list [name,value], got {maxima_str(spec)}.")
        if name not in SUPPORTED_PLOT_OPTIONS:
            unsupported.append(name)
            continue
        value = spec[1] if len(spec) == 2 else spec[1:]
        if name == "y":
            ranges.append(spec)
        options[name] = value

    if unsupported:
        warnings.append(PlotWarning(UNSUPPORTED_OPTIONS.format(options=", ".join(unsupported))))

    alt = options.pop("alt", None)
    if alt is not None and not isinstance(alt, str):
        warnings.append(PlotWarning(ALT_NOT_STRING))
        alt = None
    if alt is None:
        alt = (
            f"auto-generated plot of {maxima_str(expression)} "
            f"with parameters {maxima_str(ranges)}"
        )

    for warning in warnings:
        logger.debug(warning.message)

    return PlotReference(
        expression=expression,
        ranges=ranges,
        options={k: v for k, v in options.items() if k != "y"},
        alt=alt,
        warnings=warnings,
    )
