"""Day-by-day meal plan generation through the completion service.

The model is asked for a JSON document shaped like `MealPlan`. The reply is
then normalized before it reaches the pipeline:
- days without a date get sequential calendar dates starting today;
- meal types the caller did not ask for are dropped;
- the day count and the recipe layout of each meal are checked.

Lunch and dinner carry a starter, a main and a dessert. Breakfast and snack
carry a single recipe.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import date, timedelta
from typing import Any

from pydantic import ValidationError

from .errors import MealPlanGenerationError
from .llm import CompletionAdapter
from .models import MealPlan, MealPlanRequest, MealType, RecipeRole, TokenUsage

logger = logging.getLogger(__name__)

COURSE_ROLES = (RecipeRole.STARTER, RecipeRole.MAIN, RecipeRole.DESSERT)
COURSE_MEALS = frozenset({MealType.LUNCH, MealType.DINNER})

MEAL_PLAN_SYSTEM_PROMPT = """You are a professional chef and nutritionist. Your task is to generate \
a detailed meal plan based on the user's requirements.
The meal plan should follow this format:
{
    "days": [
        {
            "date": "YYYY-MM-DD",
            "meals": [
                {
                    "meal_type": "breakfast" | "dinner" | "lunch" | "snack",
                    "recipes": [
                        {
                            "recipe_type": "collation" | "starter" | "main" | "dessert",
                            "recipe": {
                                "name": string,
                                "ingredients": [
                                    {"label": string, "quantity": number, "unit": string}
                                ],
                                "steps": {"1": string, "2": string, ...}
                            }
                        }
                    ]
                }
            ]
        }
    ]
}"""

MEAL_PLAN_RULES = """For each day, provide ONLY ASKED MEALS and respect these rules:
- Lunch and dinner should include three recipes each: a starter, a main course, and a dessert
- Breakfast and snacks should include one recipe each
- All recipes should include a list of ingredients with quantities and units
- All recipes should include step-by-step instructions
- The meal plan should be nutritionally balanced and follow any dietary restrictions \
specified in the input
- IMPORTANT: Return ONLY the JSON object with the meal plan, do not include any markdown \
code blocks or additional text."""


def build_user_prompt(meal_request: MealPlanRequest) -> str:
    request_json = json.dumps(meal_request.model_dump(mode="json", by_alias=True), indent=2)
    return (
        "Based on the following input, generate a detailed meal plan:\n\n"
        f"Input JSON:\n```json\n{request_json}\n```\n\n"
        f"{MEAL_PLAN_RULES}"
    )


class MealPlanGenerator:
    """Builds the plan prompt, calls the completion service, and parses the reply."""

    def __init__(
        self,
        *,
        llm_adapter: CompletionAdapter,
        timeout_s: float = 120.0,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.llm_adapter = llm_adapter
        self.timeout_s = timeout_s
        self._today = today

    def generate(self, meal_request: MealPlanRequest) -> tuple[MealPlan, TokenUsage | None]:
        logger.info(
            "meal_plan event=generate diet=%s days=%d meals=%s excluded=%s",
            meal_request.diet.value,
            meal_request.days_count,
            ",".join(meal.value for meal in meal_request.meals),
            ",".join(meal_request.excluded_ingredients) or "-",
        )
        completion = self.llm_adapter.complete_json(
            system_prompt=MEAL_PLAN_SYSTEM_PROMPT,
            user_prompt=build_user_prompt(meal_request),
            timeout_s=self.timeout_s,
        )
        if not completion.content:
            raise MealPlanGenerationError("Failed to generate meal plan: empty response")

        try:
            raw_plan = json.loads(completion.content)
        except json.JSONDecodeError as exc:
            raise MealPlanGenerationError(
                f"Failed to generate meal plan: malformed JSON ({exc})"
            ) from exc

        plan = self.parse_plan(raw_plan, meal_request)
        logger.info(
            "meal_plan event=parsed days=%d total_tokens=%s",
            len(plan.days),
            completion.usage.total_tokens if completion.usage else None,
        )
        return plan, completion.usage

    def parse_plan(self, raw_plan: Any, meal_request: MealPlanRequest) -> MealPlan:
        """Validate a decoded reply against the request and return a MealPlan."""
        if not isinstance(raw_plan, dict) or not isinstance(raw_plan.get("days"), list):
            raise MealPlanGenerationError(
                "Failed to generate meal plan: response has no 'days' array"
            )

        today = self._today()
        for index, day in enumerate(raw_plan["days"]):
            if isinstance(day, dict) and not day.get("date"):
                day["date"] = (today + timedelta(days=index)).isoformat()

        try:
            plan = MealPlan.model_validate({"days": raw_plan["days"]})
        except ValidationError as exc:
            raise MealPlanGenerationError(
                f"Failed to generate meal plan: unexpected structure ({exc.error_count()} errors)"
            ) from exc

        requested = set(meal_request.meals)
        for day in plan.days:
            day.meals = [meal for meal in day.meals if meal.meal_type in requested]

        _check_layout(plan, meal_request)
        return plan


def _check_layout(plan: MealPlan, meal_request: MealPlanRequest) -> None:
    if len(plan.days) != meal_request.days_count:
        raise MealPlanGenerationError(
            f"Failed to generate meal plan: expected {meal_request.days_count} days, "
            f"got {len(plan.days)}"
        )
    for day in plan.days:
        served = [meal.meal_type for meal in day.meals]
        if sorted(served) != sorted(meal_request.meals):
            raise MealPlanGenerationError(
                f"Failed to generate meal plan: {day.date.isoformat()} has meals "
                f"{[m.value for m in served]}, expected {[m.value for m in meal_request.meals]}"
            )
        for meal in day.meals:
            roles = [item.recipe_type for item in meal.recipes]
            if meal.meal_type in COURSE_MEALS:
                ok = sorted(roles) == sorted(COURSE_ROLES)
            else:
                ok = len(roles) == 1
            if not ok:
                raise MealPlanGenerationError(
                    f"Failed to generate meal plan: {meal.meal_type.value} on "
                    f"{day.date.isoformat()} has recipes {[r.value for r in roles]}"
                )
