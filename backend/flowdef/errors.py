"""Exception taxonomy for workflow definition management.

Structural errors always carry the offending identifier (task code, cycle
member, sub-workflow code) so callers can surface it verbatim.
"""


class WorkflowDefinitionError(Exception):
    """Base exception for definition management errors."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class NotFoundError(WorkflowDefinitionError):
    """Workflow code or version does not exist."""

    def __init__(self, message: str, code: int | None = None, version: int | None = None):
        super().__init__(message, code=code)
        self.version = version


class DuplicateNameError(WorkflowDefinitionError):
    """A definition with the same name already exists in the project."""

    def __init__(self, project_code: int, name: str):
        super().__init__(f"Workflow name '{name}' already exists in project {project_code}")
        self.project_code = project_code
        self.name = name


class GraphValidationError(WorkflowDefinitionError):
    """The task relation graph is structurally invalid."""

    pass


class DanglingReferenceError(GraphValidationError):
    """A relation references a task that is not declared."""

    def __init__(self, task_code: int):
        super().__init__(f"Relation references undeclared task {task_code}")
        self.task_code = task_code


class CyclicGraphError(GraphValidationError):
    """The task relation graph contains a cycle."""

    def __init__(self, task_code: int, message: str | None = None):
        super().__init__(message or f"Task relations form a cycle through task {task_code}")
        self.task_code = task_code


class SubWorkflowNotOnlineError(WorkflowDefinitionError):
    """A referenced sub-workflow is not online."""

    def __init__(self, sub_workflow_code: int, code: int | None = None):
        super().__init__(f"Sub-workflow {sub_workflow_code} is not online", code=code)
        self.sub_workflow_code = sub_workflow_code


class VersionConflictError(WorkflowDefinitionError):
    """A concurrent commit already produced this version."""

    def __init__(self, code: int, version: int):
        super().__init__(f"Version {version} of workflow {code} already exists", code=code)
        self.version = version


class DeleteBlockedError(WorkflowDefinitionError):
    """The definition or version is online, active, or still running."""

    def __init__(self, message: str, code: int | None = None, version: int | None = None):
        super().__init__(message, code=code)
        self.version = version


class InvalidImportFormatError(WorkflowDefinitionError):
    """An import document is malformed."""

    def __init__(self, message: str, location: str | None = None):
        super().__init__(f"{location}: {message}" if location else message)
        self.location = location
