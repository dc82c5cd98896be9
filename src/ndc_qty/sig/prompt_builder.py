# src/ndc_qty/sig/prompt_builder.py
from __future__ import annotations

from dataclasses import dataclass

from ndc_qty.data_models import DoseUnit

PROMPT_SYSTEM_INSTRUCTIONS = """
You are a pharmacy assistant that reads prescription dosing instructions (SIG).

Your task:
1) Work out how much of the medication the patient takes in one day.
2) Work out the dispensing unit of that amount.
3) Convert teaspoons, tablespoons and ounces to mL (1 tsp = 5 mL, 1 tbsp = 15 mL, 1 oz = 30 mL).
4) If the instructions are ambiguous or incomplete, lower the confidence. Do NOT guess.
""".strip()


PROMPT_OUTPUT_FORMAT = f"""
Return strictly a JSON object with these top-level fields:
{{
  "unit": one of {", ".join(f'"{unit.value}"' for unit in DoseUnit)},
  "per_day": number,  // total amount per day, greater than 0
  "confidence": number  // from 0 to 1
}}
No comments and no text outside the JSON.
""".strip()


@dataclass
class PromptBuilder:
    """Builds the user prompt for interpreting one SIG."""

    def build_user_prompt(self, sig: str) -> str:
        prompt = f"""
Dosing instructions: "{sig.strip()}"

{PROMPT_OUTPUT_FORMAT}
""".strip()

        return prompt
