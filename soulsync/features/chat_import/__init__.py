"""
Chat import feature package.

Everything behind the "Import Chat" flow lives here: domain models, the
status poller, progress estimation, analysis fetching, metrics propagation,
the step-by-step workflow controller and its HTTP router.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as chat_import_router  # noqa: F401
from .domain.models import ChatFile, ImportAnalysis, ImportJob  # noqa: F401
from .services.registry import ImportWorkflowRegistry, workflow_registry  # noqa: F401
from .services.workflow import ImportWorkflow, WorkflowError  # noqa: F401
