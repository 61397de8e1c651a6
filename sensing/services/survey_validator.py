"""Survey response validation.

Walks a survey's items in definition order and checks a map of submitted
responses against them:
- items whose condition holds (or that have none) must have a response
- every present response must conform to its prompt
- responses for items the survey does not define are rejected
"""

from typing import Any, Mapping, Union

from sensing.errors import InvalidResponseValueError, UnexpectedResponseError
from sensing.logging_config import get_logger
from sensing.no_response import NoResponse
from sensing.schemas.survey import Prompt, RepeatableSet, Survey
from sensing.services.conditions import ConditionEvaluator
from sensing.services.prompt_validation import PromptValidator

logger = get_logger(__name__)

_ABSENT = object()


class SurveyValidator:
    """Service for validating survey responses against a survey definition."""

    @staticmethod
    def validate(survey: Survey, responses: Mapping[str, Any]) -> dict[str, Any]:
        """Validate one survey response.

        Items are checked in definition order. Each validated value is
        recorded so that later conditions can refer to it; a condition can
        never see an item that comes after it.

        When an item's condition is false a missing response is recorded as
        NOT_DISPLAYED. A response that is present anyway is still validated
        against its prompt and recorded if it conforms.

        Args:
            survey: Survey definition
            responses: Raw responses keyed by item id

        Returns:
            The validated responses keyed by item id, in definition order

        Raises:
            InvalidResponseValueError: A response is missing or malformed
            UnexpectedResponseError: Responses exist for undefined items
            MalformedConditionError: A condition in the survey is invalid

        Example:
            >>> SurveyValidator.validate(survey, {"p1": 7, "p2": "hello"})
            {'p1': 7, 'p2': 'hello'}
        """
        checked = SurveyValidator._validate_items(survey.items, responses, {})
        logger.debug(f"Validated {len(checked)} responses for survey {survey.id}")
        return checked

    @staticmethod
    def _validate_items(
        items: list[Union[Prompt, RepeatableSet]],
        responses: Mapping[str, Any],
        scope: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Validate one level of the item tree.

        Args:
            items: Items of this level, in order
            responses: Raw responses for this level
            scope: Validated responses visible from enclosing levels
        """
        checked: dict[str, Any] = {}
        visible = dict(scope)

        for item in items:
            raw = responses.get(item.id, _ABSENT)

            displayed = True
            if item.condition is not None:
                displayed = ConditionEvaluator.evaluate(item.condition, visible)

            if raw is _ABSENT:
                if displayed:
                    raise InvalidResponseValueError(item.id, None, "no response was given")
                value = NoResponse.NOT_DISPLAYED
            elif isinstance(item, RepeatableSet):
                value = SurveyValidator._validate_repeatable_set(item, raw, visible)
            else:
                value = PromptValidator.validate(item, raw)

            checked[item.id] = value
            visible[item.id] = value

        extra = set(responses) - set(checked)
        if extra:
            raise UnexpectedResponseError(extra)

        return checked

    @staticmethod
    def _validate_repeatable_set(
        repeatable_set: RepeatableSet,
        value: Any,
        scope: Mapping[str, Any],
    ) -> Union[NoResponse, list[dict[str, Any]]]:
        """Validate every iteration of a repeatable set.

        Each iteration is validated like a survey of the set's items that
        can also see the enclosing scope. Empty iterations are dropped.
        """
        sentinel = NoResponse.decode(value)
        if sentinel is not None:
            if sentinel is NoResponse.SKIPPED and not repeatable_set.skippable:
                raise InvalidResponseValueError(
                    repeatable_set.id, value, "was skipped, but it is not skippable"
                )
            return sentinel

        if not isinstance(value, list):
            raise InvalidResponseValueError(
                repeatable_set.id, value, "must be a list of iterations"
            )

        iterations = []
        for iteration in value:
            if not isinstance(iteration, Mapping):
                raise InvalidResponseValueError(
                    repeatable_set.id, iteration, "every iteration must be an object"
                )
            if not iteration:
                continue
            iterations.append(
                SurveyValidator._validate_items(repeatable_set.items, iteration, scope)
            )

        return iterations
