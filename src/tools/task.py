"""TaskTool - decompose a complex instruction and run it step by step.

The tool body is a small orchestration pipeline of its own:
1. Ask the model whether the task is simple or complex
2. If complex, ask for 3-5 ordered sub-tasks
3. Run every sub-task through the model, in order
4. Ask the model to integrate the sub-task results into one answer
"""

import json
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field, ValidationError

from shared.config import GlobalOptions, ModelConfig, Settings
from shared.logging import get_logger
from shared.models import Message, Role
from tools.base import BaseTool

if TYPE_CHECKING:
    from orchestrator.gateway import ModelGateway

logger = get_logger(__name__)

PREVIEW_LENGTH = 100

FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


class ComplexityAnalysis(BaseModel):
    is_complex: bool
    steps: int = 1
    reason: str = ""


class SubTask(BaseModel):
    id: int
    description: str
    action: str


class SubTaskResult(BaseModel):
    sub_task_id: int
    description: str
    result: str
    completed_at: datetime = Field(default_factory=datetime.utcnow)


class IntegrationResult(BaseModel):
    final_result: str
    sub_task_count: int
    integrated_at: datetime = Field(default_factory=datetime.utcnow)


class SimpleTaskOutcome(BaseModel):
    """The task was judged simple and was not decomposed."""
    success: bool = True
    type: Literal["direct"] = "direct"
    description: str
    result: str = "This is a simple task and can be handled directly"


class DecomposedTaskOutcome(BaseModel):
    """The task ran as N sub-tasks whose results were integrated."""
    success: bool = True
    type: Literal["decomposed"] = "decomposed"
    description: str
    sub_tasks: int
    sub_task_results: list[SubTaskResult] = Field(default_factory=list)
    results: IntegrationResult


FALLBACK_SUB_TASKS = [
    SubTask(id=1, description="Analyze requirements", action="Understand the core requirements of the task"),
    SubTask(id=2, description="Execute main operation", action="Complete the main part of the task"),
    SubTask(id=3, description="Verify and refine", action="Check the result and refine it"),
]

COMPLEXITY_PROMPT = """Analyze the complexity of the following task:
Task: {task}

Answer:
1. Is this a simple task or a complex task?
2. Does it need to be split into several sub-tasks?
3. How many steps will it take?

Return the analysis as JSON: {{"isComplex": true|false, "steps": <number>, "reason": "<short reason>"}}"""

BREAKDOWN_PROMPT = """Break the following complex task into concrete sub-tasks:
Task: {task}

Requirements:
1. Split the task into 3-5 clear sub-tasks
2. Each sub-task should be executable on its own
3. Sub-tasks must follow a logical order
4. Return the list as JSON

Format:
{{
  "subTasks": [
    {{"id": 1, "description": "sub-task description", "action": "concrete action to perform"}}
  ]
}}"""

EXECUTION_PROMPT = """Carry out the following sub-task:
{action}

Requirements:
1. Focus on completing this specific sub-task
2. Give a detailed result
3. If you run into a problem, explain why"""

INTEGRATION_PROMPT = """Original task: {task}

The following sub-tasks have been completed:
{summaries}

Integrate the sub-task results above into one complete final result."""


def parse_json_payload(text: str) -> Any:
    """
    Parse model output that should be JSON.

    A surrounding markdown code fence is tolerated.

    Raises:
        ValueError: If the text is not valid JSON
    """
    stripped = (text or "").strip()
    match = FENCE_RE.match(stripped)
    if match:
        stripped = match.group(1)
    return json.loads(stripped)


def _preview(text: str) -> str:
    return f"{text[:PREVIEW_LENGTH]}..."


class TaskTool(BaseTool):
    """Split a complex task into sub-tasks and execute them."""

    name = "TaskTool"
    description = "Break a complex task into several sub-tasks and execute them"
    input_schema = {
        "type": "object",
        "properties": {
            "description": {
                "type": "string",
                "description": "Short task description"
            },
            "prompt": {
                "type": "string",
                "description": "Detailed task instructions"
            },
            "model_name": {
                "type": "string",
                "description": "Model pointer to run the sub-tasks with",
                "default": "task"
            }
        },
        "required": ["description", "prompt"]
    }

    def __init__(self, gateway: "ModelGateway", settings: Settings) -> None:
        self.gateway = gateway
        self.settings = settings

    def _resolve_model(self, pointer: str) -> ModelConfig:
        if pointer in self.settings.models:
            return self.settings.models[pointer]
        return self.settings.model_for(self.settings.task_model_pointer)

    def _options(self) -> GlobalOptions:
        return self.settings.global_options.with_tools([])

    async def _ask(self, prompt: str, model_config: ModelConfig) -> str:
        response = await self.gateway.query(
            [Message(role=Role.USER, content=prompt)],
            model_config,
            self._options()
        )
        return response.content

    async def execute(self, input: dict[str, Any]) -> SimpleTaskOutcome | DecomposedTaskOutcome:
        description = input["description"]
        prompt = input["prompt"]
        model_config = self._resolve_model(input.get("model_name") or "task")

        analysis = await self.analyze_complexity(prompt, model_config)
        if not analysis.is_complex:
            logger.info("Task handled directly", description=description)
            return SimpleTaskOutcome(description=description)

        sub_tasks = await self.break_down(prompt, model_config)

        results = []
        for sub_task in sub_tasks:
            results.append(await self.execute_sub_task(sub_task, model_config))

        integration = await self.integrate(results, prompt, model_config)

        logger.info("Task decomposed", description=description, sub_tasks=len(sub_tasks))
        return DecomposedTaskOutcome(
            description=description,
            sub_tasks=len(sub_tasks),
            sub_task_results=results,
            results=integration
        )

    async def analyze_complexity(self, task: str, model_config: ModelConfig) -> ComplexityAnalysis:
        """
        Ask the model whether the task needs decomposition.

        An unparseable verdict counts as complex.
        """
        content = await self._ask(COMPLEXITY_PROMPT.format(task=task), model_config)

        try:
            data = parse_json_payload(content)
            if not isinstance(data, dict):
                raise ValueError("complexity verdict is not an object")
            return ComplexityAnalysis(
                is_complex=bool(data.get("isComplex", data.get("is_complex", False))),
                steps=int(data.get("steps") or 1),
                reason=str(data.get("reason") or "")
            )
        except (ValueError, TypeError) as e:
            logger.warning("Complexity analysis unparseable, treating task as complex", error=str(e))
            return ComplexityAnalysis(
                is_complex=True,
                steps=3,
                reason="Analysis failed, handling as a complex task"
            )

    async def break_down(self, task: str, model_config: ModelConfig) -> list[SubTask]:
        """Ask the model for ordered sub-tasks, falling back to a generic plan."""
        content = await self._ask(BREAKDOWN_PROMPT.format(task=task), model_config)

        try:
            data = parse_json_payload(content)
        except ValueError as e:
            logger.warning("Task breakdown unparseable, using fallback plan", error=str(e))
            return list(FALLBACK_SUB_TASKS)

        items = data.get("subTasks", data.get("sub_tasks")) if isinstance(data, dict) else data
        sub_tasks = []
        for index, item in enumerate(items if isinstance(items, list) else []):
            if not isinstance(item, dict):
                continue
            description = str(item.get("description") or "")
            try:
                sub_tasks.append(SubTask(
                    id=item.get("id") or index + 1,
                    description=description,
                    action=str(item.get("action") or description)
                ))
            except ValidationError:
                continue

        if not sub_tasks:
            logger.warning("Task breakdown returned no sub-tasks, using fallback plan")
            return list(FALLBACK_SUB_TASKS)
        return sub_tasks

    async def execute_sub_task(self, sub_task: SubTask, model_config: ModelConfig) -> SubTaskResult:
        content = await self._ask(EXECUTION_PROMPT.format(action=sub_task.action), model_config)
        return SubTaskResult(
            sub_task_id=sub_task.id,
            description=sub_task.description,
            result=content
        )

    async def integrate(
        self,
        results: list[SubTaskResult],
        task: str,
        model_config: ModelConfig
    ) -> IntegrationResult:
        """Merge sub-task results into the final answer."""
        summaries = "\n".join(f"- {r.description}: {_preview(r.result)}" for r in results)
        content = await self._ask(
            INTEGRATION_PROMPT.format(task=task, summaries=summaries),
            model_config
        )
        return IntegrationResult(final_result=content, sub_task_count=len(results))
