"""
Safety rule catalog.

Every detection rule has a fixed severity, a default parent-visibility flag and
a message template. Messages are supportive, never shame-based, and point to a
professional where a health concern is involved. The app gives guidance, not
diagnosis.

Some alerts (stress) stay private to the subject.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from wellcheck.domain.models import AlertType, Severity

MessageParams = Mapping[str, Any]

NEDA_HELPLINE_URL = "https://www.nationaleatingdisorders.org/help-support/contact-helpline"

# Pain reports at or above this count escalate to a warning.
PAIN_ESCALATION_COUNT = 3


@dataclass(frozen=True)
class SafetyRule:
    id: AlertType
    name: str
    description: str
    severity: Severity
    share_with_parent: bool
    message_template: Callable[[MessageParams], str]
    resource_link: str | None = None

    def format_message(self, params: MessageParams | None = None) -> str:
        return self.message_template(params or {})


def _sleep_deficit_message(params: MessageParams) -> str:
    nights = params.get("nights", 3)
    avg_hours = params.get("avg_hours", "unknown")
    target_hours = params.get("target_hours", 8)
    return (
        f"Sleep has been below {target_hours} hours for {nights} nights "
        f"(averaging {avg_hours} hours). Adequate sleep (8-10 hours) is essential for teen "
        "development, athletic performance, and recovery. Consider adjusting bedtime routines "
        "or reducing screen time before bed."
    )


def _training_spike_message(params: MessageParams) -> str:
    percent = params.get("percent_increase", 150)
    return (
        f"Training volume increased {percent}% compared to your recent average. Gradual "
        "progression helps reduce injury risk. Consider adding extra recovery time or spacing "
        "out intense sessions."
    )


def _pain_flag_message(params: MessageParams) -> str:
    count = params.get("count", 1)
    days = params.get("days", 7)
    if count >= PAIN_ESCALATION_COUNT:
        return (
            f"Pain has been reported {count} times in the last {days} days. Recurring pain may "
            "indicate an injury that needs attention. If pain persists, consider consulting a "
            "healthcare provider or athletic trainer."
        )
    return (
        "Pain was reported in a recent check-in. Take note of when and where it occurs. If pain "
        "continues or worsens, consider consulting a healthcare provider."
    )


def _low_energy_message(params: MessageParams) -> str:
    days = params.get("days", 3)
    return (
        f"Energy levels have been low for {days} consecutive days. This could indicate "
        "inadequate recovery, nutrition, or sleep. Consider taking a rest day, reviewing sleep "
        "habits, and ensuring you're eating enough to fuel your activity."
    )


def _high_stress_message(params: MessageParams) -> str:
    days = params.get("days", 5)
    return (
        f"Stress has been elevated for {days} of the last 7 days. It's normal to feel stressed "
        "sometimes, but ongoing stress can affect your health and performance. Consider talking "
        "to someone you trust, trying relaxation techniques, or taking breaks when needed."
    )


def _restrictive_eating_message(params: MessageParams) -> str:
    return (
        "Your eating patterns and training load may need attention. Growing bodies, especially "
        "active ones, need adequate fuel. Eating enough supports your performance, recovery, and "
        "overall health. Consider speaking with a healthcare provider or registered dietitian "
        "who understands teen athletes."
    )


def _overtraining_message(params: MessageParams) -> str:
    return (
        "Your body may be showing signs of overtraining: high training load combined with low "
        "energy and high soreness. Rest is when your body gets stronger. Consider taking a "
        "recovery day, reducing intensity, and prioritizing sleep."
    )


def _low_intake_message(params: MessageParams) -> str:
    avg_calories = params.get("avg_calories", "low")
    return (
        f"Logged calorie intake has been {avg_calories} for several days. Active teens "
        "typically need 2000-3000+ calories daily. Make sure you're eating enough to support "
        "your training and growth. If you're unsure about your nutrition, consider talking to a "
        "registered dietitian."
    )


SAFETY_RULES: tuple[SafetyRule, ...] = (
    SafetyRule(
        id=AlertType.SLEEP_DEFICIT,
        name="Sleep Deficit Detection",
        description="3 consecutive nights below minimum sleep target",
        severity=Severity.WARNING,
        share_with_parent=True,
        message_template=_sleep_deficit_message,
    ),
    SafetyRule(
        id=AlertType.TRAINING_SPIKE,
        name="Sudden Training Spike",
        description="Weekly training minutes >= 150% of the trailing 3-week average",
        severity=Severity.WARNING,
        share_with_parent=True,
        message_template=_training_spike_message,
    ),
    SafetyRule(
        id=AlertType.PAIN_FLAG,
        name="Pain Flag Alert",
        description="Pain reported in check-ins",
        severity=Severity.INFO,
        share_with_parent=True,
        message_template=_pain_flag_message,
    ),
    SafetyRule(
        id=AlertType.LOW_ENERGY,
        name="Very Low Energy Pattern",
        description="Energy level <= 2 for 3 consecutive check-ins",
        severity=Severity.WARNING,
        share_with_parent=True,
        message_template=_low_energy_message,
    ),
    SafetyRule(
        id=AlertType.HIGH_STRESS,
        name="High Stress Pattern",
        description="Stress level >= 4 for 5+ days in a 7-day window",
        severity=Severity.INFO,
        share_with_parent=False,
        message_template=_high_stress_message,
    ),
    SafetyRule(
        id=AlertType.RESTRICTIVE_EATING,
        name="Signs of Restrictive Eating",
        description="Very low calorie intake with high training and a weight loss goal",
        severity=Severity.CRITICAL,
        share_with_parent=True,
        message_template=_restrictive_eating_message,
        resource_link=NEDA_HELPLINE_URL,
    ),
    SafetyRule(
        id=AlertType.OVERTRAINING,
        name="Overtraining Indicators",
        description="High training load + low energy + high soreness",
        severity=Severity.WARNING,
        share_with_parent=True,
        message_template=_overtraining_message,
    ),
    SafetyRule(
        id=AlertType.LOW_INTAKE,
        name="Low Nutritional Intake",
        description="Very low calorie intake for multiple days",
        severity=Severity.WARNING,
        share_with_parent=True,
        message_template=_low_intake_message,
    ),
)

_RULES_BY_ID: Mapping[AlertType, SafetyRule] = MappingProxyType(
    {rule.id: rule for rule in SAFETY_RULES}
)


def get_rule(alert_type: AlertType | str) -> SafetyRule:
    """Look up a rule by identifier. Raises KeyError for unknown identifiers."""
    try:
        return _RULES_BY_ID[AlertType(alert_type)]
    except ValueError as e:
        raise KeyError(f"Unknown alert type: {alert_type}") from e


def rule_severity(alert_type: AlertType | str, params: MessageParams | None = None) -> Severity:
    """Severity for a finding, applying the pain-flag escalation."""
    rule = get_rule(alert_type)
    if rule.id is AlertType.PAIN_FLAG and params:
        if int(params.get("count", 0)) >= PAIN_ESCALATION_COUNT:
            return Severity.WARNING
    return rule.severity
