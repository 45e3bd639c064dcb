"""
Exception types raised by the form builder services.

Routers never see raw SQLAlchemy or requests errors: services translate them
into one of the classes below and the application-level handlers in
``formbuilder.app`` turn those into HTTP responses.
"""


class FormBuilderError(Exception):
    """Base class for every failure the form builder reports to its callers"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FormValidationError(FormBuilderError):
    """A structural edit was rejected before any state changed"""


class DuplicateNameError(FormValidationError):
    def __init__(self, name: str):
        super().__init__(f"A field or column named '{name}' already exists")
        self.name = name


class EmptyNameError(FormValidationError):
    def __init__(self, what: str = "Name"):
        super().__init__(f"{what} is required")


class TemplateNotFoundError(FormBuilderError):
    def __init__(self, template_id):
        super().__init__(f"Template with ID {template_id} not found")
        self.template_id = template_id


class RecordNotFoundError(FormBuilderError):
    def __init__(self, record_id):
        super().__init__(f"Record with ID {record_id} not found")
        self.record_id = record_id


class FormElementNotFoundError(FormBuilderError):
    """A tab, field or column addressed by a structural edit does not exist"""


class PersistenceError(FormBuilderError):
    """The row store rejected or could not serve a request"""


class OptionLoadError(FormBuilderError):
    """A remote option endpoint could not be queried"""
