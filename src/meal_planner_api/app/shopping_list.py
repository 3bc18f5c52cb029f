"""Shopping list consolidation.

This stage is best-effort: whatever goes wrong, the caller gets a list (maybe
empty) and never an exception.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import TypeAdapter, ValidationError

from .llm import CompletionAdapter
from .models import Ingredient, MealPlan, TokenUsage

logger = logging.getLogger(__name__)

_INGREDIENT_LIST = TypeAdapter(list[Ingredient])

SHOPPING_LIST_SYSTEM_PROMPT = """You are a professional chef. Your task is to generate a \
consolidated shopping list from the provided ingredients.
The shopping list should follow this format:
{
    "shopping_list": [
        {"label": string, "quantity": number, "unit": string}
    ]
}

Rules for the shopping list:
1. Combine similar ingredients and sum their quantities
2. Use consistent units (e.g., convert all weights to grams, all volumes to milliliters)
3. Round quantities to reasonable numbers
4. Remove any duplicate entries
5. Sort ingredients alphabetically
6. IMPORTANT: Return ONLY the JSON object with the shopping_list array, do not include \
any markdown code blocks or additional text."""


class ShoppingListAggregator:
    def __init__(self, *, llm_adapter: CompletionAdapter, timeout_s: float = 120.0) -> None:
        self.llm_adapter = llm_adapter
        self.timeout_s = timeout_s

    def aggregate(self, plan: MealPlan) -> tuple[list[Ingredient], TokenUsage | None]:
        ingredients = plan.all_ingredients()
        logger.info("shopping_list event=collected ingredients=%d", len(ingredients))
        if not ingredients:
            logger.warning("shopping_list event=skipped reason=no_ingredients")
            return [], None

        raw_ingredients = json.dumps([item.model_dump(mode="json") for item in ingredients])
        try:
            completion = self.llm_adapter.complete_json(
                system_prompt=SHOPPING_LIST_SYSTEM_PROMPT,
                user_prompt=(
                    "Generate a consolidated shopping list from these ingredients:\n"
                    f"```json\n{raw_ingredients}\n```"
                ),
                timeout_s=self.timeout_s,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("shopping_list event=degraded reason=request_failed error=%s", exc)
            return [], None

        if not completion.content:
            logger.warning("shopping_list event=degraded reason=empty_response")
            return [], None
        try:
            decoded = json.loads(completion.content)
        except json.JSONDecodeError as exc:
            logger.warning("shopping_list event=degraded reason=malformed_json error=%s", exc)
            return [], None

        shopping_list = self.parse_shopping_list(decoded)
        logger.info("shopping_list event=parsed items=%d", len(shopping_list))
        return shopping_list, completion.usage

    @staticmethod
    def parse_shopping_list(decoded: Any) -> list[Ingredient]:
        """Accept a bare array or `{"shopping_list": [...]}`; anything else yields []."""
        if isinstance(decoded, dict) and isinstance(decoded.get("shopping_list"), list):
            items = decoded["shopping_list"]
        elif isinstance(decoded, list):
            items = decoded
        else:
            logger.warning(
                "shopping_list event=degraded reason=unexpected_shape type=%s",
                type(decoded).__name__,
            )
            return []

        try:
            return _INGREDIENT_LIST.validate_python(items)
        except ValidationError as exc:
            logger.warning(
                "shopping_list event=degraded reason=invalid_items errors=%d", exc.error_count()
            )
            return []
