from .deployer import HealthGatedDeployer
from .health_gate import HealthGate, HealthPolicy
from .image_builder import ImageBuilder
from .pipeline import DeploymentPipeline
from .rollback_controller import RollbackController
from .source_watcher import SourceWatcher

__all__ = [
    "HealthGatedDeployer",
    "HealthGate",
    "HealthPolicy",
    "ImageBuilder",
    "DeploymentPipeline",
    "RollbackController",
    "SourceWatcher",
]
