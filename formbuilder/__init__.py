"""Schema-driven form builder: templates, records and form editing."""

__version__ = "1.0.0"
