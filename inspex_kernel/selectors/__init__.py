"""Read-only query selectors."""

from inspex_kernel.selectors.consistency_selector import ConsistencySelector
from inspex_kernel.selectors.workflow_selector import WorkflowSelector

__all__ = ["ConsistencySelector", "WorkflowSelector"]
