"""Meal plan generation service."""
