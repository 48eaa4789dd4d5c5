"""
Data schema definitions for churn scoring.

Uses Pandera for runtime validation of batch DataFrames. The input schema
is deliberately loose: rules coerce odd values themselves, so only the
identifier column is enforced. The output schema guards the risk fields
written back onto customer records.
"""

from pandera import Column, Check, DataFrameSchema

from .config import DEFAULT_CONFIG


_OPTIONAL_INPUT = {
    name: Column(
        None,  # Any dtype; rules coerce values themselves
        nullable=True,
        required=False,
        description=description,
    )
    for name, description in [
        ("monthly_revenue", "Monthly recurring revenue"),
        ("payment_status", "current, overdue or failed"),
        ("days_since_signup", "Account age in days"),
        ("last_login_days_ago", "Days since the last login"),
        ("logins_last30days", "Logins in the last 30 days"),
        ("active_features_used", "Distinct product features in active use"),
        ("tickets_opened", "Support tickets opened"),
        ("NPS_score", "Last NPS answer (0-10), optional"),
        ("customer_email", "Contact address"),
    ]
}


# Schema for scoring input data
SCORING_INPUT_SCHEMA = DataFrameSchema(
    {
        "customer_id": Column(
            None,
            nullable=True,  # Blank ids are named positionally before scoring
            description="Unique customer identifier"
        ),
        **_OPTIONAL_INPUT,
    },
    strict=False,  # Allow extra columns (plan, user_stage, ...)
    coerce=False,  # Coercion is done per rule, never by the schema
    description="Schema for churn scoring input data"
)


# Schema for scoring output data
SCORING_OUTPUT_SCHEMA = DataFrameSchema(
    {
        "customer_id": Column(str, nullable=False),
        "churn_score": Column(
            float,
            nullable=False,
            checks=[
                Check.greater_than_or_equal_to(0.0),
                Check.less_than_or_equal_to(1.0),
            ]
        ),
        "risk_points": Column(
            int,
            nullable=False,
            checks=[
                Check.greater_than_or_equal_to(0),
                Check.less_than_or_equal_to(DEFAULT_CONFIG.max_points),
            ]
        ),
        "risk_level": Column(
            str,
            nullable=False,
            checks=Check.isin(list(DEFAULT_CONFIG.risk_levels))
        ),
        "churn_reason": Column(str, nullable=False),
        "action_recommended": Column(str, nullable=False),
    },
    strict=False,  # Allow input and rule columns
    description="Schema for churn scoring output data"
)


def validate_output(df, config=DEFAULT_CONFIG):
    """Validate scored output against the bounds of ``config``."""
    if config is DEFAULT_CONFIG:
        return SCORING_OUTPUT_SCHEMA.validate(df)
    schema = SCORING_OUTPUT_SCHEMA.update_columns({
        "risk_points": {
            "checks": [
                Check.greater_than_or_equal_to(0),
                Check.less_than_or_equal_to(config.max_points),
            ]
        },
        "risk_level": {"checks": Check.isin(list(config.risk_levels))},
    })
    return schema.validate(df)


__all__ = ["SCORING_INPUT_SCHEMA", "SCORING_OUTPUT_SCHEMA", "validate_output"]
