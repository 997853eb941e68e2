"""Utilities package for the MyRecipeBox application."""
