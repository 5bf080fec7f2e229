"""
Body measurement helpers used alongside the evaluation form.

The caregiver checks BMI before recording; a low BMI marks the resident as a
target for skin-care evaluation.

Key concepts:
- BMI: weight (kg) divided by height (m) squared, rounded to one decimal
- Evaluation target: BMI at or below the underweight threshold
"""

import math

from pydantic import BaseModel, Field, computed_field

UNDERWEIGHT_BMI_THRESHOLD = 18.5


class BodyMeasurement(BaseModel):
    """Height and weight as entered; either may be missing."""

    height_cm: float | None = Field(default=None, description="Height in centimetres")
    weight_kg: float | None = Field(default=None, description="Weight in kilograms")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def bmi(self) -> float | None:
        """BMI rounded to one decimal, or None when it cannot be computed."""
        if not self.height_cm or not self.weight_kg:
            return None

        height_m = self.height_cm / 100
        if height_m <= 0 or self.weight_kg <= 0:
            return None

        value = self.weight_kg / (height_m * height_m)
        if not math.isfinite(value):
            return None

        # Half-up rounding to one decimal
        return math.floor(value * 10 + 0.5) / 10

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_evaluation_target(self) -> bool:
        bmi = self.bmi
        return bmi is not None and bmi <= UNDERWEIGHT_BMI_THRESHOLD

    def formatted_bmi(self) -> str:
        return f"{self.bmi:.1f}" if self.bmi is not None else "--"
