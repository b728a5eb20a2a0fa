"""Flag evaluation: what a flag serves by default, and whether that agrees
with the fallback value hard-coded in the application.

Pure functions, no I/O.
"""

from typing import Optional

from flaghealth.domain.models.common import UNKNOWN, EnvironmentKey, JSONValue
from flaghealth.domain.models.flags import FlagDefinition, FlagOutcome, FlagStatusRecord
from flaghealth.domain.models.report import Classification, EvaluationResult, FlagReport

REASON_NO_DEFINITION = "Flag details could not be loaded."
REASON_NO_ENVIRONMENT = "Flag has no configuration for this environment."
REASON_DYNAMIC_RULE = (
    "The default rule uses a percentage rollout or experiment. Dynamic targeting "
    "strategies cannot be compared with a static fallback value."
)
REASON_BAD_INDEX = "The default rule points at a variation that does not exist."

# The status listing renders a missing fallback as this literal string.
UNKNOWN_FALLBACK_LITERAL = "unknown"


def derive_environment_default(definition: Optional[FlagDefinition], environment_key: EnvironmentKey) -> EvaluationResult:
    """Derives the value a flag serves by default in one environment.

    When targeting is on, the default rule (fallthrough) governs; when it is
    off, the off variation does. Anything that does not resolve to a single
    existing variation is indeterminate.
    """
    if definition is None:
        return EvaluationResult.indeterminate(REASON_NO_DEFINITION)

    env = definition.per_environment.get(environment_key)
    if env is None:
        return EvaluationResult.indeterminate(REASON_NO_ENVIRONMENT)

    index = env.fallthrough_variation if env.enabled else env.off_variation
    if index is None:
        return EvaluationResult.indeterminate(REASON_DYNAMIC_RULE)

    if not 0 <= index < len(definition.variations):
        return EvaluationResult.indeterminate(REASON_BAD_INDEX)

    variation = definition.variations[index]
    return EvaluationResult(
        determinate=True,
        value=variation.value,
        variation_index=index,
        variation_name=variation.name,
    )


def is_null_like(value: JSONValue) -> bool:
    """True for null, an unreported fallback, or the literal 'unknown'."""
    return value is None or value is UNKNOWN or value == UNKNOWN_FALLBACK_LITERAL


def _is_number(value: JSONValue) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_strictly_equal(left: JSONValue, right: JSONValue) -> bool:
    """Type-and-value equality.

    Numbers compare by value (1 equals 1.0, as in JSON). Objects and arrays
    only compare equal when they are the very same object; no structural
    comparison is made.
    """
    if isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
        return left is right
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def classify(fallback_value: JSONValue, effective_default: EvaluationResult) -> Classification:
    """Three-way comparison of a fallback value with the environment default."""
    if is_null_like(fallback_value):
        return Classification.INDETERMINATE
    if not effective_default.determinate:
        return Classification.INDETERMINATE
    if values_strictly_equal(fallback_value, effective_default.value):
        return Classification.MATCH
    return Classification.MISMATCH


def explain_fallback(status: FlagStatusRecord) -> Optional[str]:
    """Why a fallback is unknown, or None when one was reported."""
    value = status.fallback_value
    if value is None:
        return "The fallback value is null, so there is no static fallback to compare against."
    if value is not UNKNOWN and value != UNKNOWN_FALLBACK_LITERAL:
        return None
    if status.never_evaluated:
        return (
            "The fallback value is unknown because this flag has never been evaluated "
            "in your application. Evaluate flags individually with a fallback value."
        )
    return (
        "The SDK does not report a fallback value when allFlags() is used. "
        "Evaluate flags individually and provide a fallback value."
    )


def _explain(status: FlagStatusRecord, result: EvaluationResult, classification: Classification, fetch_error: Optional[str]) -> str:
    if fetch_error:
        return f"Error loading flag details: {fetch_error}"
    if classification is Classification.MATCH:
        return "The fallback value in code matches the environment default rule."
    if classification is Classification.MISMATCH:
        return (
            "The fallback value in code does not match the environment default rule. "
            "During an outage the application will serve the fallback instead."
        )
    return explain_fallback(status) or result.reason or "Unable to determine."


def evaluate_outcome(outcome: FlagOutcome, environment_key: EnvironmentKey) -> FlagReport:
    """Builds the per-flag report for one fetch outcome.

    An outcome without a definition is always indeterminate.
    """
    status = outcome.status
    definition = outcome.definition
    result = derive_environment_default(definition, environment_key)
    classification = Classification.INDETERMINATE if outcome.fetch_error else classify(status.fallback_value, result)

    return FlagReport(
        flag_key=definition.key if definition and definition.key else status.flag_key,
        flag_name=definition.display_name if definition and definition.display_name else "Unknown Flag",
        status_name=status.status_name,
        fallback_value=status.fallback_value,
        environment_default=result,
        classification=classification,
        explanation=_explain(status, result, classification, outcome.fetch_error),
        last_evaluated_at=status.last_evaluated_at,
        fetch_error=outcome.fetch_error,
        deprecated=definition.deprecated if definition else False,
        archived=definition.archived if definition else False,
    )
