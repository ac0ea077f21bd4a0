"""Typed errors raised by the schema layer."""


class SchemaNotFound(LookupError):
    """Raised when validation is requested for an entity the dictionary does not define."""

    def __init__(self, entity_name: str, version: str | None = None):
        self.entity_name = entity_name
        self.version = version
        suffix = f" in dictionary version {version}" if version else ""
        super().__init__(f"No schema found for: {entity_name}{suffix}")


class DictionaryLoadError(RuntimeError):
    """Raised when a dictionary or diff cannot be obtained from the dictionary service."""
