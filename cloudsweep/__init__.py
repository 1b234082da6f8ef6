"""Find and delete cloud account resources by region, age and name filters."""

__version__ = "0.1.0"