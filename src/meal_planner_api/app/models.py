"""Pydantic models shared across API, pipeline stages, and storage.

Beginner terms used in this file:
- Model: a typed schema class used for validation/serialization.
- StrEnum: an enum whose members are also plain strings on the wire.
- Alias: the JSON field name when it differs from the Python attribute name.
"""

from __future__ import annotations

from datetime import date as CalendarDate
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskStatus(StrEnum):
    """Task lifecycle states, declared in their forward order."""

    PENDING = "pending"
    IN_PROGRESS_PLAN = "in_progress_plan"
    IN_PROGRESS_SHOPPING = "in_progress_shopping"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    def can_advance_to(self, target: TaskStatus) -> bool:
        """Return True when moving from this status to `target` is a forward step."""
        if self.terminal:
            return False
        if target is TaskStatus.FAILED:
            return True
        return _STATUS_ORDER.index(target) > _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    TaskStatus.PENDING,
    TaskStatus.IN_PROGRESS_PLAN,
    TaskStatus.IN_PROGRESS_SHOPPING,
    TaskStatus.COMPLETED,
]


class MealType(StrEnum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    SNACK = "snack"


class RecipeRole(StrEnum):
    COLLATION = "collation"
    STARTER = "starter"
    MAIN = "main"
    DESSERT = "dessert"


class DietType(StrEnum):
    STANDARD = "standard"
    VEGETARIAN = "vegetarian"
    VEGAN = "vegan"
    KETO = "keto"
    PALEO = "paleo"
    GLUTEN_FREE = "gluten-free"
    DAIRY_FREE = "dairy-free"


class Ingredient(BaseModel):
    label: str
    quantity: float
    unit: str


class Recipe(BaseModel):
    name: str
    ingredients: list[Ingredient] = Field(default_factory=list)
    # Step number (as a string, "1", "2", ...) -> instruction text.
    steps: dict[str, str] = Field(default_factory=dict)


class RecipeItem(BaseModel):
    recipe_type: RecipeRole
    recipe: Recipe


class Meal(BaseModel):
    meal_type: MealType
    recipes: list[RecipeItem] = Field(default_factory=list)


class Day(BaseModel):
    date: CalendarDate
    meals: list[Meal] = Field(default_factory=list)


class MealPlan(BaseModel):
    """Output of the plan generation stage (shopping list not filled yet)."""

    days: list[Day] = Field(default_factory=list)
    shopping_list: list[Ingredient] = Field(default_factory=list)

    def all_ingredients(self) -> list[Ingredient]:
        """Flatten ingredients in day -> meal -> recipe order."""
        return [
            ingredient
            for day in self.days
            for meal in day.meals
            for item in meal.recipes
            for ingredient in item.recipe.ingredients
        ]


class MealPlanResult(BaseModel):
    """Final result attached to a completed task."""

    days: list[Day]
    shopping_list: list[Ingredient] = Field(default_factory=list)


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class TaskUsage(BaseModel):
    meal_plan: TokenUsage | None = None
    shopping_list: TokenUsage | None = None


class Task(BaseModel):
    """Canonical task record shape returned by API/storage."""

    id: str
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime
    result: MealPlanResult | None = None
    error: str | None = None
    usage: TaskUsage | None = None


class MealPlanRequest(BaseModel):
    """Request body for POST /meal-plan/generate."""

    # Unknown fields are rejected; wire names stay camelCase.
    model_config = ConfigDict(extra="forbid")

    days_count: int = Field(alias="daysCount", ge=1)
    meals: list[MealType] = Field(min_length=1)
    diet: DietType
    excluded_ingredients: list[str] = Field(default_factory=list, alias="excludedIngredients")

    @field_validator("meals")
    @classmethod
    def _dedupe_meals(cls, value: list[MealType]) -> list[MealType]:
        return list(dict.fromkeys(value))

    @field_validator("excluded_ingredients", mode="before")
    @classmethod
    def _wrap_single_ingredient(cls, value: object) -> object:
        # A bare string means one excluded ingredient; empty/None means none.
        if value is None or value == "":
            return []
        if isinstance(value, str):
            return [value]
        return value


class StartTaskResponse(BaseModel):
    """Response body for POST /meal-plan/generate."""

    task_id: str
    status: TaskStatus
