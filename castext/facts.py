"""Fact sheets for [[facts:KEY]] tags.

Fact sheets are short reference texts (standard derivatives, the product rule
and so on) that a template can pull in by key. They are kept in a registry so
a host can add its own; anything with a ``lookup(key)`` method can be used in
place of the registry.
"""

import logging
from typing import Callable, Dict, List, Optional, Protocol

from jinja2.sandbox import ImmutableSandboxedEnvironment
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class FactSheet(BaseModel):
    name: str = Field(description="Heading shown above the sheet")
    body: str = Field(description="Trusted HTML/LaTeX content")


class FactSheetProvider(Protocol):
    def lookup(self, key: str) -> Optional[FactSheet]: ...


class FactSheets:
    """Global registry of fact sheets.

    Example:
        @FactSheets.register('my_rule')
        def my_rule():
            return FactSheet(name="My rule", body=r"\\(a+b=b+a\\)")

        # Use in a template:
        # [[facts:my_rule]]
    """

    _registry: Dict[str, Callable[[], FactSheet]] = {}

    @classmethod
    def register(cls, key: str):
        """Decorator to register a function returning a FactSheet under key."""

        def decorator(factory: Callable[[], FactSheet]) -> Callable[[], FactSheet]:
            cls._registry[key] = factory
            logger.debug(f"Registered fact sheet '{key}'")
            return factory

        return decorator

    @classmethod
    def lookup(cls, key: str) -> Optional[FactSheet]:
        factory = cls._registry.get(key)
        return factory() if factory else None

    @classmethod
    def list_registered(cls) -> List[str]:
        return sorted(cls._registry)


_env = ImmutableSandboxedEnvironment(autoescape=True)
_sheet_template = _env.from_string(
    '<div class="factsheet"><h5>{{ sheet.name }}</h5>{{ sheet.body | safe }}</div>'
)


def render_fact_sheet(sheet: FactSheet) -> str:
    return _sheet_template.render(sheet=sheet)


# -----------------------------------------------------------------------------
# Built-in calculus sheets
# -----------------------------------------------------------------------------


@FactSheets.register("calc_diff_standard_derivatives")
def _standard_derivatives():
    return FactSheet(
        name="Standard derivatives",
        body=(
            r"<p>The following are the derivatives of some standard functions.</p>"
            r"\[\frac{d}{dx}x^n = nx^{n-1}\qquad \frac{d}{dx}e^{kx} = ke^{kx}"
            r"\qquad \frac{d}{dx}\ln(x) = \frac{1}{x}\]"
            r"\[\frac{d}{dx}\sin(x) = \cos(x)\qquad \frac{d}{dx}\cos(x) = -\sin(x)"
            r"\qquad \frac{d}{dx}\tan(x) = \sec^2(x)\]"
        ),
    )


@FactSheets.register("calc_diff_linearity_rule")
def _diff_linearity():
    return FactSheet(
        name="The Linearity Rule for Differentiation",
        body=(
            r"<p>For constants \(a\) and \(b\),</p>"
            r"\[\frac{d}{dx}\left(af(x)+bg(x)\right) = a\frac{df(x)}{dx}+b\frac{dg(x)}{dx}.\]"
        ),
    )


@FactSheets.register("calc_product_rule")
def _product_rule():
    return FactSheet(
        name="The Product Rule",
        body=(
            r"<p>The following rule allows one to differentiate functions which are "
            r"multiplied together.</p>"
            r"\[\frac{d}{dx}\left(u(x)v(x)\right) = u(x)\frac{dv(x)}{dx}+v(x)\frac{du(x)}{dx}.\]"
        ),
    )


@FactSheets.register("calc_quotient_rule")
def _quotient_rule():
    return FactSheet(
        name="The Quotient Rule",
        body=(
            r"<p>The quotient rule for differentiation states that for any two "
            r"differentiable functions \(u(x)\) and \(v(x)\),</p>"
            r"\[\frac{d}{dx}\left(\frac{u(x)}{v(x)}\right) = "
            r"\frac{v(x)\frac{du}{dx}-u(x)\frac{dv}{dx}}{v(x)^2}.\]"
        ),
    )


@FactSheets.register("calc_chain_rule")
def _chain_rule():
    return FactSheet(
        name="The Chain Rule",
        body=(
            r"<p>If \(y=f(g(x))\) and \(u=g(x)\) then</p>"
            r"\[\frac{dy}{dx} = \frac{dy}{du}\frac{du}{dx}.\]"
        ),
    )


@FactSheets.register("calc_int_linearity_rule")
def _int_linearity():
    return FactSheet(
        name="The Linearity Rule for Integration",
        body=(
            r"<p>For constants \(a\) and \(b\),</p>"
            r"\[\int af(x)+bg(x)\,dx = a\int f(x)\,dx+b\int g(x)\,dx.\]"
        ),
    )


@FactSheets.register("calc_int_methods_parts")
def _integration_by_parts():
    return FactSheet(
        name="Integration by Parts",
        body=r"\[\int u\frac{dv}{dx}\,dx = uv-\int v\frac{du}{dx}\,dx.\]",
    )
