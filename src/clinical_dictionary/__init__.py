"""clinical-dictionary - versioned data dictionary validation and donor migration."""

__version__ = "0.1.0"
