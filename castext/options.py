"""Render options and environment-driven configuration for castext."""

from typing import List, Literal

from decouple import Csv
from decouple import config as env_config
from pydantic import BaseModel, ConfigDict, Field

MultiplicationSign = Literal["dot", "cross", "none"]
MatrixParens = Literal["[", "(", ""]

# extra words appended to every forbidden-word policy
EXTRA_FORBIDDEN_WORDS: List[str] = env_config(
    "CASTEXT_FORBIDDEN_WORDS", default="", cast=Csv()
)

PLOT_URL = env_config("CASTEXT_PLOT_URL", default="/plots")

# LaTeX separator handed to sympy.latex(mul_symbol=...)
MUL_SYMBOLS = {
    "dot": "dot",
    "cross": "times",
    "none": r"\,",
}


class RenderOptions(BaseModel):
    """Options threaded through to display-form rendering.

    These correspond to the per-question options of the host question type:
    how implicit multiplication is shown and which brackets surround matrices.
    """

    model_config = ConfigDict(frozen=True)

    multiplication_sign: MultiplicationSign = Field(
        default_factory=lambda: env_config("CASTEXT_MULTIPLICATION_SIGN", default="dot"),
        description="Sign shown for multiplication: dot, cross or none",
    )
    matrix_parens: MatrixParens = Field(
        default_factory=lambda: env_config("CASTEXT_MATRIX_PARENS", default="["),
        description="Left delimiter for matrices: '[', '(' or '' for none",
    )

    @property
    def mul_symbol(self) -> str:
        return MUL_SYMBOLS[self.multiplication_sign]
