"""Recover LaTeX source embedded in markdown metadata tags."""
