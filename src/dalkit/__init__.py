"""Generic repository and unit of work data-access layer."""
