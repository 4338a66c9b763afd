# migrations/versions/5b1e2c7d9a40_create_forecasting_schema.py
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "5b1e2c7d9a40"
down_revision = None
branch_labels = None
depends_on = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

FEATURE_COLUMNS = [
    *[f"price_lag_{h}h" for h in (1, 2, 3, 6, 12, 24)],
    *[f"wind_lag_{h}h" for h in (1, 6, 24, 168)],
    *[f"demand_lag_{h}h" for h in (1, 24, 168)],
    *[f"temperature_lag_{h}h" for h in (1, 6, 24)],
    *[f"price_volatility_{h}h" for h in (1, 6, 24)],
    *[f"price_momentum_{h}h" for h in (3, 24)],
    "price_rolling_avg_6h",
    "price_rolling_avg_24h",
    "price_rolling_std_24h",
    "price_rolling_min_24h",
    "price_rolling_max_24h",
    "wind_rolling_avg_24h",
    "demand_rolling_avg_24h",
    "hour_sin",
    "hour_cos",
    "day_of_week_sin",
    "day_of_week_cos",
    "month_sin",
    "month_cos",
    "natural_gas_price",
    *[f"natural_gas_price_lag_{d}d" for d in (1, 7, 30)],
    "renewable_curtailment",
    "net_imports",
    "renewable_penetration",
    "wind_hour_interaction",
    "temp_demand_interaction",
    "gas_price_gas_gen_interaction",
    "weekend_hour_interaction",
    "temp_extreme_hour_interaction",
]

def upgrade():
    op.create_table(
        "observations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("demand_mw", sa.Float(), nullable=True),
        sa.Column("interchange_net", sa.Float(), nullable=True),
        sa.Column("generation_by_fuel", JSON, nullable=False),
        sa.Column("weather_by_station", JSON, nullable=False),
        sa.Column("is_valid", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("ingested_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_observations_timestamp", "observations", ["timestamp"], unique=True)
    op.create_index("ix_observations_is_valid", "observations", ["is_valid"])

    op.create_table(
        "auxiliary_prices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("series", sa.String(length=64), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("series", "timestamp", name="uq_auxiliary_series_hour"),
    )
    op.create_index("ix_auxiliary_prices_series", "auxiliary_prices", ["series"])

    op.create_table(
        "engineered_features",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        *[sa.Column(name, sa.Float(), nullable=True) for name in FEATURE_COLUMNS],
    )
    op.create_index("ix_engineered_features_timestamp", "engineered_features", ["timestamp"], unique=True)

    op.create_table(
        "model_versions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("version_id", sa.String(length=64), nullable=False),
        sa.Column("trained_at", sa.DateTime(), nullable=False),
        sa.Column("algorithm", sa.String(length=64), nullable=False),
        sa.Column("hyperparameters", JSON, nullable=False),
        sa.Column("mae", sa.Float(), nullable=True),
        sa.Column("rmse", sa.Float(), nullable=True),
        sa.Column("smape", sa.Float(), nullable=True),
        sa.Column("r_squared", sa.Float(), nullable=True),
        sa.Column("training_record_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("training_start", sa.DateTime(), nullable=True),
        sa.Column("training_end", sa.DateTime(), nullable=True),
        sa.Column("feature_names", JSON, nullable=False),
        sa.Column("feature_importance", JSON, nullable=True),
        sa.Column("residual_std", sa.Float(), nullable=True),
        sa.Column("artifact", sa.LargeBinary(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="ready"),
    )
    op.create_index("ix_model_versions_version_id", "model_versions", ["version_id"], unique=True)
    op.create_index("ix_model_versions_trained_at", "model_versions", ["trained_at"])
    op.create_index("ix_model_versions_status", "model_versions", ["status"])

    op.create_table(
        "predictions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("target_timestamp", sa.DateTime(), nullable=False),
        sa.Column("horizon_hours", sa.Integer(), nullable=False),
        sa.Column("predicted_price", sa.Float(), nullable=False),
        sa.Column("confidence_lower", sa.Float(), nullable=True),
        sa.Column("confidence_upper", sa.Float(), nullable=True),
        sa.Column("confidence_score", sa.Float(), nullable=True),
        sa.Column("model_version", sa.String(length=64), nullable=True),
        sa.Column("features_used", JSON, nullable=True),
        sa.Column("validated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_predictions_created_at", "predictions", ["created_at"])
    op.create_index("ix_predictions_target_timestamp", "predictions", ["target_timestamp"])
    op.create_index("ix_predictions_model_version", "predictions", ["model_version"])
    op.create_index("ix_predictions_due", "predictions", ["validated_at", "target_timestamp"])

    op.create_table(
        "prediction_performance",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("request_timestamp", sa.DateTime(), nullable=False),
        sa.Column("horizon_hours", sa.Integer(), nullable=False),
        sa.Column("total_duration_ms", sa.Float(), nullable=False),
        sa.Column("cache_hit_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cache_miss_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cache_hit_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("predictions_generated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("batch_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_batches", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_prediction_performance_request_timestamp", "prediction_performance", ["request_timestamp"])

    op.create_table(
        "prediction_accuracy",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "prediction_id",
            sa.Integer(),
            sa.ForeignKey("predictions.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("target_timestamp", sa.DateTime(), nullable=False),
        sa.Column("predicted_price", sa.Float(), nullable=False),
        sa.Column("actual_price", sa.Float(), nullable=False),
        sa.Column("absolute_error", sa.Float(), nullable=False),
        sa.Column("percent_error", sa.Float(), nullable=True),
        sa.Column("symmetric_percent_error", sa.Float(), nullable=False),
        sa.Column("horizon_hours", sa.Integer(), nullable=False),
        sa.Column("model_version", sa.String(length=64), nullable=True),
        sa.Column("within_confidence_interval", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("actual_regime", sa.String(length=16), nullable=False),
        sa.Column("validated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_prediction_accuracy_target_timestamp", "prediction_accuracy", ["target_timestamp"])
    op.create_index("ix_prediction_accuracy_validated_at", "prediction_accuracy", ["validated_at"])

    op.create_table(
        "cv_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("num_folds", sa.Integer(), nullable=False),
        sa.Column("validation_window_hours", sa.Integer(), nullable=False),
        sa.Column("completed_folds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_mae", sa.Float(), nullable=True),
        sa.Column("avg_rmse", sa.Float(), nullable=True),
        sa.Column("avg_smape", sa.Float(), nullable=True),
        sa.Column("avg_mape", sa.Float(), nullable=True),
    )

    op.create_table(
        "cv_folds",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("run_id", sa.Integer(), sa.ForeignKey("cv_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("fold_number", sa.Integer(), nullable=False),
        sa.Column("train_start", sa.DateTime(), nullable=True),
        sa.Column("train_end", sa.DateTime(), nullable=True),
        sa.Column("validation_start", sa.DateTime(), nullable=True),
        sa.Column("validation_end", sa.DateTime(), nullable=True),
        sa.Column("train_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("validation_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("skip_reason", sa.Text(), nullable=True),
        sa.Column("mae", sa.Float(), nullable=True),
        sa.Column("rmse", sa.Float(), nullable=True),
        sa.Column("smape", sa.Float(), nullable=True),
        sa.Column("mape", sa.Float(), nullable=True),
    )
    op.create_index("ix_cv_folds_run_id", "cv_folds", ["run_id"])

    op.create_table(
        "retraining_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("triggered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("performance_before", JSON, nullable=True),
        sa.Column("performance_after", JSON, nullable=True),
        sa.Column("improvement", sa.Float(), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("model_version", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_retraining_events_created_at", "retraining_events", ["created_at"])

    op.create_table(
        "hyperparameter_trials",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("search_id", sa.String(length=64), nullable=False),
        sa.Column("trial_number", sa.Integer(), nullable=False),
        sa.Column("hyperparameters", JSON, nullable=False),
        sa.Column("performance_metrics", JSON, nullable=True),
        sa.Column("training_duration_seconds", sa.Float(), nullable=True),
        sa.Column("is_best_trial", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("model_version", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_hyperparameter_trials_search_id", "hyperparameter_trials", ["search_id"])

    op.create_table(
        "data_quality_reports",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("report_date", sa.DateTime(), nullable=False),
        sa.Column("total_records", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quality_score", sa.Float(), nullable=False),
        sa.Column("missing_data_analysis", JSON, nullable=False),
        sa.Column("outlier_analysis", JSON, nullable=False),
        sa.Column("price_statistics", JSON, nullable=True),
        sa.Column("enhanced_feature_coverage", JSON, nullable=False),
        sa.Column("quality_factors", JSON, nullable=False),
        sa.Column("recent_completeness", sa.Float(), nullable=True),
        sa.Column("temporal_gaps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recommendations", JSON, nullable=False),
    )
    op.create_index("ix_data_quality_reports_report_date", "data_quality_reports", ["report_date"])

def downgrade():
    for table in (
        "data_quality_reports",
        "hyperparameter_trials",
        "retraining_events",
        "cv_folds",
        "cv_runs",
        "prediction_accuracy",
        "prediction_performance",
        "predictions",
        "model_versions",
        "engineered_features",
        "auxiliary_prices",
        "observations",
    ):
        op.drop_table(table)
