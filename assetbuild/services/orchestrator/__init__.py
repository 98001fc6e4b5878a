"""构建编排器

- models.py: 阶段顺序、阶段间上下文、执行报告
- steps.py: 18 个工作流步骤
- orchestrator.py: 全量构建工作流
- on_change.py: 单文件重建工作流
"""

from assetbuild.services.orchestrator.models import STAGES, BuildContext, WorkflowReport
from assetbuild.services.orchestrator.on_change import OnChangeWorkflow
from assetbuild.services.orchestrator.orchestrator import Orchestrator, enabled_stages
from assetbuild.services.orchestrator.steps import WorkflowSteps

__all__ = [
    "STAGES",
    "BuildContext",
    "OnChangeWorkflow",
    "Orchestrator",
    "WorkflowReport",
    "WorkflowSteps",
    "enabled_stages",
]
