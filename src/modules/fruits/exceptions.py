"""Fruit catalog exceptions."""


class FruitTypeNotFound(Exception):
    """The fruit type does not exist or has been soft-deleted."""
