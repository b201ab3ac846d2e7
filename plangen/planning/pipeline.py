"""Two-stage generation pipeline.

Stage 1 picks a persona and designs the plan skeleton. Stage 2 writes week-1
workouts from it. Later weeks are written one at a time from the same skeleton
plus the client's logged performance.

Each stage is exactly one model call. Output goes through the response parser;
a parse failure fails the stage and is never retried with the model.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from plangen.config.settings import settings
from plangen.domain.models import GeneratedWorkout, RecommendationStructure
from plangen.errors import GenerationError
from plangen.jobs.cancellation import CancellationToken, NeverCancelled
from plangen.llm.client import CompletionClient, Message, complete_with_retry
from plangen.llm.response_parser import recover_json
from plangen.llm.validation import filter_week_workouts, validate_structure
from plangen.performance.aggregator import PerformanceSnapshot, failure_exercises, format_performance_history
from plangen.planning.context import GenerationContext
from plangen.planning.load_guard import apply_failure_load_guard
from plangen.planning.prompts import build_progressive_messages, build_structure_messages, build_week_one_messages


class GenerationPipeline:
    """Runs the model calls for one plan.

    Args:
        client: Completion client
        structure_max_tokens: Output limit for the structure stage
        workout_max_tokens: Output limit for workout stages
        total_weeks: Plan length in weeks
        retry_options: Extra keyword arguments for complete_with_retry (tests pass `sleep`)
    """

    def __init__(
        self,
        client: CompletionClient,
        structure_max_tokens: int | None = None,
        workout_max_tokens: int | None = None,
        total_weeks: int | None = None,
        retry_options: dict[str, Any] | None = None,
    ) -> None:
        self.client = client
        self.structure_max_tokens = structure_max_tokens or settings.structure_max_tokens
        self.workout_max_tokens = workout_max_tokens or settings.workout_max_tokens
        self.total_weeks = total_weeks or settings.plan_weeks
        self.retry_options = retry_options or {}

    async def _complete_json(
        self,
        stage: str,
        messages: list[Message],
        max_output_tokens: int,
        token: CancellationToken,
    ) -> dict[str, Any]:
        async def check_cancelled() -> None:
            await token.check(stage)

        result = await complete_with_retry(
            self.client,
            messages,
            max_output_tokens,
            before_attempt=check_cancelled,
            **self.retry_options,
        )

        logger.info(
            "Model call completed",
            stage=stage,
            model=result.model,
            finish_reason=result.finish_reason,
            prompt_tokens=result.usage.prompt_tokens,
            completion_tokens=result.usage.completion_tokens,
            total_tokens=result.usage.total_tokens,
            response_length=len(result.text),
        )
        # raw=True keeps loguru from treating JSON braces as format placeholders
        logger.opt(raw=True).debug(f"Model response ({stage}, {len(result.text)} chars)\n{result.text}\n")

        if result.truncated:
            logger.warning(
                "Model output hit the token limit, attempting repair",
                stage=stage,
                max_output_tokens=max_output_tokens,
            )

        return recover_json(result.text).data

    async def generate_structure(
        self,
        context: GenerationContext,
        token: CancellationToken | None = None,
    ) -> RecommendationStructure:
        """Stage 1: persona, cadence and plan skeleton.

        Raises:
            MalformedResponseError: If no JSON object can be recovered
            StructureValidationError: If mandatory fields are missing
            ProviderError: If the model call fails
            JobCancelledError: If the job was cancelled before the call
        """
        messages = build_structure_messages(context, self.total_weeks)
        data = await self._complete_json("structure", messages, self.structure_max_tokens, token or NeverCancelled())
        structure = validate_structure(data)
        logger.info(
            "Generated plan structure",
            client_type=structure.client_type,
            sessions_per_week=structure.sessions_per_week,
            session_length_minutes=structure.session_length_minutes,
        )
        return structure

    async def generate_week_one(
        self,
        structure: RecommendationStructure,
        context: GenerationContext,
        token: CancellationToken | None = None,
    ) -> list[GeneratedWorkout]:
        """Stage 2: week-1 workouts for the structure.

        Raises:
            GenerationError: If no valid week-1 workout survives filtering
        """
        messages = build_week_one_messages(structure, context, self.total_weeks)
        data = await self._complete_json("week_1", messages, self.workout_max_tokens, token or NeverCancelled())
        workouts = filter_week_workouts(data, 1, structure.sessions_per_week)
        if not workouts:
            raise GenerationError("No workouts were generated for week 1")
        logger.info("Generated week workouts", week_number=1, workouts=len(workouts))
        return workouts

    async def generate_progressive_week(
        self,
        structure: RecommendationStructure,
        context: GenerationContext,
        week_number: int,
        history: list[PerformanceSnapshot],
        token: CancellationToken | None = None,
    ) -> list[GeneratedWorkout]:
        """Week N >= 2, adapted to logged performance.

        After filtering, loads for exercises the client took to failure are
        lowered deterministically.

        Args:
            structure: Plan structure from stage 1
            context: Client context
            week_number: Target week
            history: Every prior week's performance
            token: Cancellation token

        Returns:
            Workouts for the target week

        Raises:
            GenerationError: If no valid workout survives filtering
        """
        narrative = format_performance_history(history)
        messages = build_progressive_messages(structure, context, week_number, narrative, self.total_weeks)
        data = await self._complete_json(
            f"week_{week_number}",
            messages,
            self.workout_max_tokens,
            token or NeverCancelled(),
        )

        workouts = filter_week_workouts(data, week_number, structure.sessions_per_week)
        if not workouts:
            raise GenerationError(f"No workouts were generated for week {week_number}")

        workouts = apply_failure_load_guard(workouts, failure_exercises(history))
        logger.info("Generated week workouts", week_number=week_number, workouts=len(workouts))
        return workouts
