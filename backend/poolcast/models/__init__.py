from .observation import AuxiliaryPrice, Observation
from .feature import EngineeredFeature
from .model_version import ModelVersion
from .prediction import Prediction, PredictionPerformance
from .accuracy import PredictionAccuracy
from .cross_validation import CVFold, CVRun
from .retraining import HyperparameterTrial, RetrainingEvent
from .quality import DataQualityReport


__all__ = [
    "Observation",
    "AuxiliaryPrice",
    "EngineeredFeature",
    "ModelVersion",
    "Prediction",
    "PredictionPerformance",
    "PredictionAccuracy",
    "CVRun",
    "CVFold",
    "RetrainingEvent",
    "HyperparameterTrial",
    "DataQualityReport",
]
