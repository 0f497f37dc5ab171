from importlib.metadata import version

from .catalog import FileSolutionCatalog, InMemorySolutionCatalog, SolutionCatalog, propose_solution
from .deploy import Deployer, KubectlDeployer
from .errors import (
    AnswerValidationError,
    CompletenessError,
    IllegalStatusTransitionError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    OrchestratorError,
    PersistenceError,
    PreconditionError,
    RecordExistsError,
    StageError,
    StageMismatchError,
)
from .generation import GenerationFailure, GenerationResult, GenerationSuccess, ManifestGenerationLoop
from .intake import AnswerIntake, IntakeOutcome
from .models import (
    AttemptOutcome,
    BooleanQuestion,
    DeploymentOutcome,
    NumberQuestion,
    Question,
    ResourceDescriptor,
    SelectQuestion,
    SolutionCandidate,
    SolutionRecord,
    SolutionStatus,
    Stage,
    TextQuestion,
    ValidationAttempt,
)
from .orchestrator import DeploymentOrchestrator
from .questions import EnrichedQuestionSource, LLMQuestionSource, QuestionSource, StaticQuestionSource
from .settings import RuntimeSettings
from .state_store import FileSolutionStore, InMemorySolutionStore, SolutionStore, new_solution_id
from .synthesis import LLMManifestSynthesizer, ManifestSynthesizer
from .validation import DryRunValidator, KubectlDryRunValidator, ValidationResult


def get_version() -> str:
    try:
        return version("deploy-orchestrator")
    except Exception:
        return "0.0.0"


__all__ = [
    "AnswerIntake",
    "AnswerValidationError",
    "AttemptOutcome",
    "BooleanQuestion",
    "CompletenessError",
    "Deployer",
    "DeploymentOrchestrator",
    "DeploymentOutcome",
    "DryRunValidator",
    "EnrichedQuestionSource",
    "FileSolutionCatalog",
    "FileSolutionStore",
    "GenerationFailure",
    "GenerationResult",
    "GenerationSuccess",
    "IllegalStatusTransitionError",
    "InMemorySolutionCatalog",
    "InMemorySolutionStore",
    "IntakeOutcome",
    "InvalidRequestError",
    "InvalidTransitionError",
    "KubectlDeployer",
    "KubectlDryRunValidator",
    "LLMManifestSynthesizer",
    "LLMQuestionSource",
    "ManifestGenerationLoop",
    "ManifestSynthesizer",
    "NotFoundError",
    "NumberQuestion",
    "OrchestratorError",
    "PersistenceError",
    "PreconditionError",
    "Question",
    "QuestionSource",
    "RecordExistsError",
    "ResourceDescriptor",
    "RuntimeSettings",
    "SelectQuestion",
    "SolutionCandidate",
    "SolutionCatalog",
    "SolutionRecord",
    "SolutionStatus",
    "SolutionStore",
    "Stage",
    "StageError",
    "StageMismatchError",
    "StaticQuestionSource",
    "TextQuestion",
    "ValidationAttempt",
    "ValidationResult",
    "new_solution_id",
    "propose_solution",
]
